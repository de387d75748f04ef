"""Server credential status and config write routes."""
from __future__ import annotations

from litestar import get, post

from directorcore.config import PROVIDER_ENV_VARS, Config
from directorcore.credentials import GENERIC_HEADER, PROVIDER_HEADERS
from directorcore.director import DirectorService
from webui.backend.models import ConfigPayload, ProviderStatus, ServerStatus


@get("/api/config")
async def get_config(service: DirectorService) -> ServerStatus:
    policy = service.policy
    providers = {}
    for name in PROVIDER_ENV_VARS:
        env_var, key = policy.server_keys.get(name, (None, ""))
        providers[name] = ProviderStatus(
            configured=bool(key),
            env_var=env_var,
            # Mask secret keys, never echo them
            masked_key=_mask(key),
            self_credentialed=policy.is_self_credentialed(name),
            headers=list(PROVIDER_HEADERS.get(name, ())) + [GENERIC_HEADER],
        )
    return ServerStatus(
        require_client_key=policy.require_client_key,
        chat_provider=service.config.chat_provider,
        chat_models=service.config.chat_models,
        video_plan_models=service.config.video_plan_models,
        providers=providers,
    )


@post("/api/config", status_code=200)
async def save_config(data: ConfigPayload) -> dict:
    """Persist keys to the config file; the running server keeps its policy until restart."""
    cfg = Config.load()
    # Only update secrets if the user sent a non-masked value
    for name in ("gemini_api_key", "google_api_key", "veo_api_key", "hf_token"):
        value = getattr(data, name).strip()
        if value and "…" not in value:
            setattr(cfg, name, value)
    if data.gemini_api_url:
        cfg.gemini_api_url = data.gemini_api_url.rstrip("/")
    if data.chat_provider:
        cfg.chat_provider = data.chat_provider
    cfg.save()
    return {"ok": True, "restart_required": True}


def _mask(value: str) -> str:
    if not value:
        return ""
    return value[:4] + "…" + value[-4:] if len(value) > 8 else "…"
