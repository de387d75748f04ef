"""Request pipeline: parse, validate, resolve credentials, call, normalize.

Both entry points return plain ``(status, body)`` pairs so that any
transport (Litestar, the CLI, tests) can serve them. Domain errors are
raised inside the pipeline and converted to failed results only here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from schemas import DirectorCoreResult, LoopSequence, VideoPlan

from .config import MODE_PROVIDERS, VEO, Config, ServerPolicy
from .conversation import ContextCodec, ConversationEngine, parse_stage_request
from .credentials import CredentialResolver
from .errors import DirectorError, ProviderError, RequestValidationError
from .loop_assistant import LoopAssistant, parse_assistant_request
from .loop_cycle import LoopCycleDirector, parse_loop_cycle_request
from .normalizer import map_director_core_success
from .prompts import DIRECTOR_CORE_SYSTEM_PROMPT, LOOP_ASSISTANT_SYSTEM_PROMPT, build_director_prompt
from .providers import Provider, build_providers
from .validation import MODES, parse_request_body, validate_director_request

log = logging.getLogger(__name__)

# Plan modes ask the provider for JSON of this shape; image prompts stay prose
RESPONSE_SCHEMAS = {"video_plan": VideoPlan, "loop_sequence": LoopSequence}


@dataclass
class StageReply:
    status: int
    body: dict
    token: str | None = None  # only set when the stage succeeded


class DirectorService:
    def __init__(
        self,
        config: Config,
        providers: Mapping[str, Provider] | None = None,
        resolver: CredentialResolver | None = None,
    ):
        self.config = config
        self.policy = ServerPolicy.from_config(config)
        self.resolver = resolver or CredentialResolver(self.policy, config.gemini_api_url)
        self.providers = dict(providers) if providers is not None else build_providers(config, self.resolver)
        self.codec = ContextCodec(config.context_secret, config.context_ttl)

    def _provider(self, name: str) -> Provider:
        try:
            return self.providers[name]
        except KeyError:
            raise ProviderError(f"Provider {name!r} is not configured", provider=name) from None

    # -- director modes -------------------------------------------------------

    async def handle(self, headers: Mapping[str, str], raw_body: bytes | str) -> tuple[int, DirectorCoreResult]:
        """Serve one director request; never raises for client or provider faults."""
        mode = None
        provider_name = None
        try:
            body = parse_request_body(raw_body)
            if isinstance(body, dict) and body.get("mode") in MODES:
                mode = body["mode"]
                provider_name = MODE_PROVIDERS[mode]
            result = await self.run(headers, body)
        except DirectorError as e:
            provider_name = getattr(e, "provider", None) or provider_name
            log.warning("Director request failed (%s, %d): %s", e.kind, e.status_code, e.message)
            return e.status_code, e.to_result(mode, provider_name)
        return 200, result

    async def run(self, headers: Mapping[str, str], body: Any) -> DirectorCoreResult:
        """Validated, credentialed provider call; raises DirectorError subclasses."""
        validation = validate_director_request(body)
        if not validation.ok:
            raise RequestValidationError(validation.errors)
        request = validation.value

        provider_name = MODE_PROVIDERS[request.mode]
        credential = self.resolver.resolve(provider_name, headers, body)
        log.info("%s request via %s (key from %s)", request.mode, provider_name, credential.source)

        provider = self._provider(provider_name)
        payload = await provider.generate(
            DIRECTOR_CORE_SYSTEM_PROMPT,
            build_director_prompt(request),
            credential.api_key,
            request.images,
            response_schema=RESPONSE_SCHEMAS.get(request.mode),
        )

        loop_length = getattr(request.payload, "loop_length", None)
        result = map_director_core_success(payload, request.mode, loop_length)
        result.provider = result.provider or provider_name
        return result

    # -- image-prompt conversation -------------------------------------------

    async def handle_stage(self, headers: Mapping[str, str], raw_body: bytes | str, token: str | None) -> StageReply:
        """Run one conversation stage against the context carried by ``token``."""
        provider_name = self.config.chat_provider
        try:
            body = parse_request_body(raw_body)
            request = parse_stage_request(body)
            credential = self.resolver.resolve(provider_name, headers, body)
            context = self.codec.decode(token)
            engine = ConversationEngine(self._provider(provider_name))
            outcome = await engine.run(context, request, credential.api_key)
        except DirectorError as e:
            log.warning("Image-prompt stage failed (%s, %d): %s", e.kind, e.status_code, e.message)
            result = e.to_result("image_prompt", getattr(e, "provider", None) or provider_name)
            return StageReply(e.status_code, result.to_json_dict())

        new_token = self.codec.encode(outcome.context)
        log.info("Image-prompt stage %s complete", outcome.response.get("stage"))
        return StageReply(200, {**outcome.response, "token": new_token}, new_token)

    # -- loop assistant and incremental cycles -------------------------------

    async def handle_loop_assistant(self, headers: Mapping[str, str], raw_body: bytes | str) -> tuple[int, dict]:
        """One loop-assistant chat turn; the reply is ``{"reply": text}``."""
        provider_name = self.config.chat_provider
        try:
            body = parse_request_body(raw_body)
            messages = parse_assistant_request(body)
            credential = self.resolver.resolve(provider_name, headers, body)
            system_prompt = self.config.loop_assistant_prompt or LOOP_ASSISTANT_SYSTEM_PROMPT
            assistant = LoopAssistant(self._provider(provider_name), system_prompt)
            reply = await assistant.reply(messages, credential.api_key)
        except DirectorError as e:
            log.warning("Loop assistant failed (%s, %d): %s", e.kind, e.status_code, e.message)
            result = e.to_result("loop_sequence", getattr(e, "provider", None) or provider_name)
            return e.status_code, result.to_json_dict()
        return 200, {"reply": reply}

    async def handle_loop_cycle(self, headers: Mapping[str, str], raw_body: bytes | str) -> tuple[int, dict]:
        """Generate the next cycle of a running loop."""
        try:
            body = parse_request_body(raw_body)
            request = parse_loop_cycle_request(body)
            credential = self.resolver.resolve(VEO, headers, body)
            director = LoopCycleDirector(self._provider(VEO))
            cycle = await director.next_cycle(request, credential.api_key)
        except DirectorError as e:
            log.warning("Loop cycle failed (%s, %d): %s", e.kind, e.status_code, e.message)
            result = e.to_result("loop_sequence", getattr(e, "provider", None) or VEO)
            return e.status_code, result.to_json_dict()
        log.info("Loop cycle %d generated", cycle["cycle"])
        return 200, cycle
