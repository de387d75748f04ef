"""Litestar ASGI application — Director Core Web API."""
from __future__ import annotations

import logging
from typing import Mapping

from litestar import Litestar, Request, Response, get
from litestar.config.cors import CORSConfig
from litestar.di import Provide
from litestar.logging import LoggingConfig

from directorcore.config import Config
from directorcore.credentials import GENERIC_HEADER, PROVIDER_HEADERS
from directorcore.director import DirectorService
from directorcore.errors import DirectorError
from directorcore.providers import Provider
from webui.backend.routes.config import get_config, save_config
from webui.backend.routes.director import TOKEN_HEADER, reset_image_prompt, run_director, run_image_prompt_stage
from webui.backend.routes.loops import loop_assistant, next_loop_cycle
from webui.backend.routes.planner import check_gate, segment_script

log = logging.getLogger(__name__)


@get("/health")
async def health() -> dict:
    return {"status": "ok"}


def _director_error_handler(request: Request, exc: DirectorError) -> Response:
    log.warning("%s %s failed (%s): %s", request.method, request.url.path, exc.kind, exc.message)
    return Response(content=exc.to_result().to_json_dict(), status_code=exc.status_code)


def _credential_headers() -> list[str]:
    names = {GENERIC_HEADER, TOKEN_HEADER}
    for headers in PROVIDER_HEADERS.values():
        names.update(headers)
    return ["Content-Type", *sorted(names)]


def create_app(config: Config | None = None, providers: Mapping[str, Provider] | None = None) -> Litestar:
    """Build the app; ``providers`` replaces the real backends (used by tests)."""
    config = config or Config.load()
    service = DirectorService(config, providers=providers)

    return Litestar(
        route_handlers=[
            health,
            get_config,
            save_config,
            run_director,
            run_image_prompt_stage,
            reset_image_prompt,
            loop_assistant,
            next_loop_cycle,
            segment_script,
            check_gate,
        ],
        dependencies={"service": Provide(lambda: service, sync_to_thread=False)},
        exception_handlers={DirectorError: _director_error_handler},
        cors_config=CORSConfig(
            allow_origins=config.allowed_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=_credential_headers(),
            allow_credentials="*" not in config.allowed_origins,
        ),
        logging_config=LoggingConfig(
            loggers={
                "directorcore": {"level": "INFO", "handlers": ["queue_listener"]},
                "webui": {"level": "INFO", "handlers": ["queue_listener"]},
            }
        ),
    )


app = create_app()
