"""Four-stage image-prompt conversation: seed, confirm, refine, generate.

The server keeps no conversation state. The whole context travels in a
signed token that is re-issued after every successful stage; a failed
stage issues nothing, so the caller's previous token stays valid.
"""
from __future__ import annotations

import base64
import binascii
import copy
import hashlib
import hmac
import json
import logging
import time
from dataclasses import asdict, dataclass, field, fields
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StrictBool, TypeAdapter, ValidationError

from . import prompts
from .config import CONTEXT_TTL_SECONDS
from .errors import MalformedProviderResponse, RequestValidationError
from .sections import (
    MOOD_MEMORY,
    NEGATIVE_PROMPT,
    POSITIVE_PROMPT,
    SETTINGS,
    SUMMARY,
    extract_section,
    parse_settings,
)
from .validation import ImageModel, OptionalText, RequiredText, StringList, format_errors

log = logging.getLogger(__name__)

# Bump when ConversationContext changes shape; older tokens are discarded
CONTEXT_VERSION = 1

STAGES = ("seed", "confirm", "refine", "generate")


@dataclass
class ConversationContext:
    version: int = CONTEXT_VERSION
    stage: str | None = None  # last stage that completed
    vision_seed_text: str = ""
    model_choice: str | None = None
    camera_snippet: str | None = None
    shot_snippet: str | None = None
    lighting_snippet: str | None = None
    color_snippet: str | None = None
    summary: str | None = None
    summary_confirmed: bool = False
    refinement_commands: list[str] = field(default_factory=list)
    mood_memory: str | None = None
    positive_prompt: str | None = None
    negative_prompt: str | None = None
    settings: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationContext":
        known = {f.name for f in fields(cls)}
        ctx = cls(**{k: v for k, v in data.items() if k in known})
        if not isinstance(ctx.refinement_commands, list) or not isinstance(ctx.settings, dict):
            raise ValueError("malformed context collections")
        return ctx

    @property
    def is_empty(self) -> bool:
        return self.stage is None and not self.summary


# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------

def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class ContextCodec:
    """Signs and verifies conversation tokens.

    Token layout is ``<base64url(json)>.<base64url(hmac-sha256)>`` where the
    JSON carries the schema version ``v``, issue time ``iat`` and the
    context itself under ``ctx``.
    """

    def __init__(self, secret: str, ttl: int = CONTEXT_TTL_SECONDS, clock=time.time):
        if not secret:
            raise ValueError("ContextCodec needs a signing secret")
        self._key = secret.encode("utf-8")
        self.ttl = ttl
        self._clock = clock

    def _sign(self, body: str) -> str:
        return _b64encode(hmac.new(self._key, body.encode("ascii"), hashlib.sha256).digest())

    def encode(self, context: ConversationContext) -> str:
        envelope = {"v": CONTEXT_VERSION, "iat": int(self._clock()), "ctx": context.to_dict()}
        body = _b64encode(json.dumps(envelope, separators=(",", ":")).encode("utf-8"))
        return f"{body}.{self._sign(body)}"

    def decode(self, token: str | None) -> ConversationContext:
        """Return the carried context, or a fresh one for any unusable token."""
        if not token:
            return ConversationContext()
        # Issued tokens are pure base64url; anything else is forged or mangled
        if not token.isascii():
            log.warning("Discarding conversation token with non-ASCII characters")
            return ConversationContext()

        body, _, signature = token.strip().partition(".")
        if not body or not signature or not hmac.compare_digest(signature, self._sign(body)):
            log.warning("Discarding conversation token with a bad signature")
            return ConversationContext()

        try:
            envelope = json.loads(_b64decode(body))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, ValueError) as e:
            log.warning("Discarding undecodable conversation token: %s", e)
            return ConversationContext()

        if not isinstance(envelope, dict) or envelope.get("v") != CONTEXT_VERSION:
            log.warning("Discarding conversation token with schema version %r",
                        envelope.get("v") if isinstance(envelope, dict) else None)
            return ConversationContext()

        issued = envelope.get("iat")
        if not isinstance(issued, (int, float)) or self._clock() - issued > self.ttl:
            log.warning("Discarding expired conversation token")
            return ConversationContext()

        try:
            return ConversationContext.from_dict(envelope.get("ctx") or {})
        except (TypeError, ValueError) as e:
            log.warning("Discarding conversation token with a malformed context: %s", e)
            return ConversationContext()


# ---------------------------------------------------------------------------
# Stage requests
# ---------------------------------------------------------------------------

class SeedRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stage: Literal["seed"]
    visionSeedText: RequiredText
    modelChoice: ImageModel
    cameraSnippet: OptionalText = None
    shotSnippet: OptionalText = None
    lightingSnippet: OptionalText = None
    colorSnippet: OptionalText = None


class ConfirmRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stage: Literal["confirm"]
    confirmed: StrictBool
    feedback: OptionalText = None


class RefineRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stage: Literal["refine"]
    refinementCommands: StringList = Field(default_factory=list)
    moodMemory: OptionalText = None


class GenerateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    stage: Literal["generate"]


StageRequest = Annotated[
    Union[SeedRequest, ConfirmRequest, RefineRequest, GenerateRequest],
    Field(discriminator="stage"),
]

_stage_adapter = TypeAdapter(StageRequest)


def parse_stage_request(body: Any):
    """Validate a stage request body, raising RequestValidationError."""
    if not isinstance(body, dict):
        raise RequestValidationError(["body: must be a JSON object"])
    if body.get("stage") not in STAGES:
        raise RequestValidationError([f"stage: must be one of {', '.join(STAGES)}"])
    try:
        return _stage_adapter.validate_python(body)
    except ValidationError as e:
        # Drop the union tag from error locations
        errors = [msg.split(".", 1)[1] if msg.startswith(f"{body['stage']}.") else msg
                  for msg in format_errors(e)]
        raise RequestValidationError(errors) from e


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@dataclass
class StageOutcome:
    context: ConversationContext
    response: dict


def _summary_view(ctx: ConversationContext, stage: str) -> dict:
    return {
        "stage": stage,
        "summary": ctx.summary or "",
        "moodMemory": ctx.mood_memory or "",
        "summaryConfirmed": ctx.summary_confirmed,
    }


class ConversationEngine:
    """Runs one stage at a time against a provider.

    Each stage works on a copy of the incoming context; the caller only
    sees the new context when the stage succeeds.
    """

    def __init__(self, provider):
        self.provider = provider

    async def _ask(self, prompt: str, api_key: str) -> str:
        payload = await self.provider.generate(prompts.IMAGE_CONVERSATION_SYSTEM_PROMPT, prompt, api_key)
        text = payload.get("text") if isinstance(payload, dict) else None
        return text if isinstance(text, str) else ""

    async def run(self, context: ConversationContext, request, api_key: str) -> StageOutcome:
        ctx = copy.deepcopy(context)
        if isinstance(request, SeedRequest):
            return await self.seed(request, api_key)
        if isinstance(request, ConfirmRequest):
            return await self.confirm(ctx, request, api_key)
        if isinstance(request, RefineRequest):
            return await self.refine(ctx, request, api_key)
        return await self.generate(ctx, api_key)

    async def seed(self, request: SeedRequest, api_key: str) -> StageOutcome:
        # Seeding always starts a new conversation
        ctx = ConversationContext(
            vision_seed_text=request.visionSeedText,
            model_choice=request.modelChoice,
            camera_snippet=request.cameraSnippet,
            shot_snippet=request.shotSnippet,
            lighting_snippet=request.lightingSnippet,
            color_snippet=request.colorSnippet,
        )
        content = await self._ask(prompts.build_seed_prompt(ctx), api_key)
        summary = extract_section(content, SUMMARY)
        if not summary:
            log.error("Seed stage reply had no Summary section")
            raise MalformedProviderResponse("Provider reply is missing a Summary section", content)

        ctx.summary = summary
        ctx.mood_memory = extract_section(content, MOOD_MEMORY) or ""
        ctx.stage = "seed"
        return StageOutcome(ctx, _summary_view(ctx, "seed"))

    async def confirm(self, ctx: ConversationContext, request: ConfirmRequest, api_key: str) -> StageOutcome:
        if not ctx.summary or not ctx.vision_seed_text:
            raise RequestValidationError(["No active conversation; run the seed stage first"])

        if request.confirmed:
            ctx.summary_confirmed = True
            ctx.stage = "confirm"
            return StageOutcome(ctx, _summary_view(ctx, "confirm"))

        if not request.feedback:
            raise RequestValidationError(["feedback: required when confirmed is false"])

        content = await self._ask(prompts.build_confirm_prompt(ctx, request.feedback), api_key)
        summary = extract_section(content, SUMMARY)
        if not summary:
            log.error("Confirm stage reply had no Summary section")
            raise MalformedProviderResponse("Provider reply is missing a Summary section", content)

        ctx.summary = summary
        ctx.mood_memory = extract_section(content, MOOD_MEMORY) or ctx.mood_memory or ""
        ctx.summary_confirmed = False
        ctx.stage = "confirm"
        return StageOutcome(ctx, _summary_view(ctx, "confirm"))

    async def refine(self, ctx: ConversationContext, request: RefineRequest, api_key: str) -> StageOutcome:
        if not ctx.summary:
            raise RequestValidationError(["No active conversation; run the seed stage first"])
        if not ctx.summary_confirmed:
            raise RequestValidationError(["Summary must be confirmed before refining"])

        ctx.refinement_commands = list(request.refinementCommands)
        if request.moodMemory:
            ctx.mood_memory = request.moodMemory
        ctx.stage = "refine"
        return await self.generate(ctx, api_key)

    async def generate(self, ctx: ConversationContext, api_key: str) -> StageOutcome:
        if not ctx.summary or not ctx.model_choice or not ctx.vision_seed_text:
            raise RequestValidationError(["Missing required context to generate prompts"])
        if not ctx.summary_confirmed:
            raise RequestValidationError(["Summary must be confirmed before generating"])

        content = await self._ask(prompts.build_generate_prompt(ctx), api_key)
        positive = extract_section(content, POSITIVE_PROMPT)
        negative = extract_section(content, NEGATIVE_PROMPT)
        settings = parse_settings(extract_section(content, SETTINGS))

        missing = [name for name, value in (
            (POSITIVE_PROMPT, positive), (NEGATIVE_PROMPT, negative), (SETTINGS, settings),
        ) if not value]
        if missing:
            log.error("Generate stage reply is missing %s", ", ".join(missing))
            raise MalformedProviderResponse(f"Provider reply is missing {', '.join(missing)}", content)

        ctx.positive_prompt = positive
        ctx.negative_prompt = negative
        ctx.settings = settings
        ctx.summary = extract_section(content, SUMMARY) or ctx.summary
        ctx.mood_memory = extract_section(content, MOOD_MEMORY) or ctx.mood_memory
        ctx.stage = "generate"

        view = _summary_view(ctx, "generate")
        del view["summaryConfirmed"]
        view.update({
            "refinementCommands": list(ctx.refinement_commands),
            "positivePrompt": positive,
            "negativePrompt": negative,
            "settings": dict(settings),
        })
        return StageOutcome(ctx, view)
