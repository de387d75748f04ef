"""LLM provider backends.

A provider takes a system instruction, a user prompt, an API key and
optional inline images, and returns a raw success payload (a plain dict
whose shape the normalizer understands). Plan modes pass a pydantic model
as ``response_schema`` to request structured JSON output. ``chat`` sends a
user/assistant message history instead of a single prompt.

Every SDK or transport failure is
reclassified as :class:`~directorcore.errors.ProviderError` here, at the
call site.
"""
from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from huggingface_hub import AsyncInferenceClient
from huggingface_hub.errors import HfHubHTTPError

from .config import GEMINI, HUGGINGFACE, VEO, Config
from .errors import ProviderError

log = logging.getLogger(__name__)


class Provider(Protocol):
    name: str

    async def generate(
        self,
        system_instruction: str,
        prompt: str,
        api_key: str,
        images: list[str] | None = None,
        response_schema: type | None = None,
    ) -> dict[str, Any]:
        ...

    async def chat(
        self,
        system_instruction: str,
        messages: list[dict[str, str]],
        api_key: str,
    ) -> dict[str, Any]:
        ...


def decode_data_uri(uri: str) -> tuple[str, bytes]:
    """Split ``data:<mime>;base64,<data>`` into ``(mime, bytes)``."""
    header, _, data = uri.partition(",")
    if not header.startswith("data:") or not data:
        raise ValueError("not a data URI")
    mime = header[len("data:"):].split(";", 1)[0] or "application/octet-stream"
    if ";base64" in header:
        try:
            return mime, base64.b64decode(data, validate=True)
        except binascii.Error as e:
            raise ValueError(f"invalid base64 payload: {e}") from e
    return mime, data.encode("utf-8")


class GeminiProvider:
    """google-genai backed provider used for Gemini and Veo planning calls."""

    def __init__(self, name: str, models: list[str], resolver=None):
        if not models:
            raise ValueError("GeminiProvider needs at least one model")
        self.name = name
        self.models = list(models)
        self.resolver = resolver

    async def _pick_model(self, api_key: str) -> str:
        if self.resolver is None or len(self.models) == 1:
            return self.models[0]
        try:
            model = await self.resolver.resolve_model(api_key, self.models)
        except ProviderError as e:
            log.warning("Entitlement lookup failed, using %s: %s", self.models[0], e)
            return self.models[0]
        if model is None:
            log.warning("Key is not entitled to any of %s, trying %s", self.models, self.models[0])
            return self.models[0]
        return model

    async def _send(self, api_key: str, model: str, contents: list[Any], config: types.GenerateContentConfig):
        client = genai.Client(api_key=api_key)
        try:
            return await client.aio.models.generate_content(model=model, contents=contents, config=config)
        except genai_errors.APIError as e:
            log.error("%s returned %s: %s", self.name, e.code, e.message)
            raise ProviderError(
                e.message or f"{self.name} request failed",
                status=e.code,
                details=getattr(e, "details", None),
                provider=self.name,
            ) from e
        except Exception as e:
            log.error("%s request could not be sent: %s", self.name, e)
            raise ProviderError(f"{self.name} request could not be sent: {e}", provider=self.name) from e

    async def generate(self, system_instruction, prompt, api_key, images=None, response_schema=None):
        model = await self._pick_model(api_key)

        contents: list[Any] = []
        for uri in images or []:
            try:
                mime, data = decode_data_uri(uri)
            except ValueError as e:
                log.warning("Skipping unreadable inline image: %s", e)
                continue
            contents.append(types.Part.from_bytes(data=data, mime_type=mime))
        contents.append(prompt)

        structured: dict[str, Any] = {}
        if response_schema is not None:
            # Structured output: the model must answer with JSON of this shape
            structured = {"response_mime_type": "application/json", "response_schema": response_schema}
        config = types.GenerateContentConfig(system_instruction=system_instruction, **structured)

        log.info("Calling %s model %s (%d inline images)", self.name, model, len(contents) - 1)
        response = await self._send(api_key, model, contents, config)
        return _gemini_payload(self.name, model, response)

    async def chat(self, system_instruction, messages, api_key):
        """Multi-turn call; ``assistant`` turns are sent with Gemini's ``model`` role."""
        model = await self._pick_model(api_key)
        contents = [
            types.Content(
                role="model" if m["role"] == "assistant" else "user",
                parts=[types.Part(text=m["content"])],
            )
            for m in messages
        ]
        config = types.GenerateContentConfig(system_instruction=system_instruction)

        log.info("Calling %s model %s with %d chat turns", self.name, model, len(contents))
        response = await self._send(api_key, model, contents, config)
        return _gemini_payload(self.name, model, response)


def _gemini_payload(provider: str, model: str, response) -> dict[str, Any]:
    texts: list[str] = []
    images: list[dict[str, Any]] = []
    finish_reason = None

    for candidate in response.candidates or []:
        if finish_reason is None and candidate.finish_reason is not None:
            finish_reason = str(candidate.finish_reason)
        content = candidate.content
        for part in (content.parts if content and content.parts else []):
            if part.text:
                texts.append(part.text)
            elif part.inline_data and part.inline_data.data:
                images.append({
                    "mimeType": part.inline_data.mime_type or "image/png",
                    "data": base64.b64encode(part.inline_data.data).decode("ascii"),
                })
        # Only the first candidate is used
        break

    payload: dict[str, Any] = {"provider": provider, "model": model, "text": "".join(texts)}
    if images:
        payload["images"] = images
    if finish_reason:
        payload["metadata"] = {"finishReason": finish_reason}
    return payload


class HuggingFaceProvider:
    """Chat-completion provider on the Hugging Face inference API.

    ``response_schema`` is accepted for interface parity and not enforced;
    plan modes are always served by Gemini/Veo.
    """

    name = HUGGINGFACE

    def __init__(self, model: str, max_tokens: int = 2048, temperature: float = 0.7):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def _complete(self, messages: list[dict[str, Any]], api_key: str) -> dict[str, Any]:
        log.info("Calling huggingface model %s", self.model)
        client = AsyncInferenceClient(token=api_key)
        try:
            response = await client.chat_completion(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except HfHubHTTPError as e:
            status = getattr(e.response, "status_code", None)
            log.error("huggingface returned %s: %s", status, e)
            raise ProviderError(str(e), status=status, provider=self.name) from e
        except Exception as e:
            log.error("huggingface request could not be sent: %s", e)
            raise ProviderError(f"huggingface request could not be sent: {e}", provider=self.name) from e

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        return {"provider": self.name, "model": self.model, "text": text}

    async def generate(self, system_instruction, prompt, api_key, images=None, response_schema=None):
        content: Any = prompt
        if images:
            content = [{"type": "text", "text": prompt}]
            for uri in images:
                content.append({"type": "image_url", "image_url": {"url": uri}})

        return await self._complete([
            {"role": "system", "content": system_instruction},
            {"role": "user", "content": content},
        ], api_key)

    async def chat(self, system_instruction, messages, api_key):
        history = [{"role": m["role"], "content": m["content"]} for m in messages]
        return await self._complete([{"role": "system", "content": system_instruction}, *history], api_key)


def build_providers(config: Config, resolver=None) -> dict[str, Provider]:
    """Provider registry keyed by provider name."""
    providers: dict[str, Provider] = {
        GEMINI: GeminiProvider(GEMINI, config.chat_models, resolver),
        VEO: GeminiProvider(VEO, config.video_plan_models, resolver),
    }
    providers[HUGGINGFACE] = HuggingFaceProvider(config.hf_chat_model)
    return providers
