"""Request validation and normalization.

Turns an untyped JSON body into one of three strict request envelopes, or
a list of human-readable errors naming the offending fields. Only a body
that is not JSON at all raises (:class:`~directorcore.errors.InvalidBody`);
everything else is reported through :class:`ValidationResult`.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from .errors import InvalidBody

VISUAL_CATEGORIES = (
    "cameraAngles",
    "shotSizes",
    "composition",
    "cameraMovement",
    "lightingStyles",
    "colorPalettes",
    "atmosphere",
)

MODES = ("image_prompt", "video_plan", "loop_sequence")


# ---------------------------------------------------------------------------
# Field coercions
# ---------------------------------------------------------------------------

def _required_text(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("must be a string")
    text = value.strip()
    if not text:
        raise ValueError("must not be empty")
    return text


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("must be a string or null")
    return value.strip() or None


def _enum_text(value: Any) -> str:
    # Numbers never stand in for string enums
    if not isinstance(value, str):
        raise ValueError("must be a string")
    return value.strip()


def _string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError("must be a list of strings")
    return [v.strip() for v in value if isinstance(v, str) and v.strip()]


def _loop_length(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a number or null")
    if not math.isfinite(value):
        raise ValueError("must be a finite number")
    if value <= 0:
        raise ValueError("must be greater than zero")
    return max(1, int(round(value)))


def _image_refs(value: Any) -> list[str]:
    refs = _string_list(value)
    for i, ref in enumerate(refs):
        if not ref.startswith("data:"):
            raise ValueError(f"entry {i} is not a data URI")
    return refs


RequiredText = Annotated[str, BeforeValidator(_required_text)]
OptionalText = Annotated[Optional[str], BeforeValidator(_optional_text)]
StringList = Annotated[List[str], BeforeValidator(_string_list)]
LoopLength = Annotated[Optional[int], BeforeValidator(_loop_length)]
ImageRefs = Annotated[List[str], BeforeValidator(_image_refs)]

ImageModel = Annotated[Literal["sdxl", "flux", "illustrious"], BeforeValidator(_enum_text)]
Tone = Annotated[Literal["informative", "hype", "calm", "dark", "inspirational"], BeforeValidator(_enum_text)]
VisualStyle = Annotated[Literal["realistic", "stylized", "anime", "mixed-media"], BeforeValidator(_enum_text)]
AspectRatio = Annotated[Literal["16:9", "9:16"], BeforeValidator(_enum_text)]


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------

class VisualControls(BaseModel):
    """Selected option IDs per visual-control category.

    Unknown categories are ignored so newer clients keep working; missing
    ones default to an empty list.
    """
    model_config = ConfigDict(extra="ignore")

    cameraAngles: StringList = Field(default_factory=list)
    shotSizes: StringList = Field(default_factory=list)
    composition: StringList = Field(default_factory=list)
    cameraMovement: StringList = Field(default_factory=list)
    lightingStyles: StringList = Field(default_factory=list)
    colorPalettes: StringList = Field(default_factory=list)
    atmosphere: StringList = Field(default_factory=list)

    def selected(self) -> dict[str, list[str]]:
        return {c: list(getattr(self, c)) for c in VISUAL_CATEGORIES}


class GlossaryEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: RequiredText
    label: RequiredText
    tooltip: RequiredText
    promptSnippet: RequiredText


def _entry_list(value: Any) -> Any:
    return [] if value is None else value


EntryList = Annotated[List[GlossaryEntry], BeforeValidator(_entry_list)]


class Glossary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    cameraAngles: EntryList = Field(default_factory=list)
    shotSizes: EntryList = Field(default_factory=list)
    composition: EntryList = Field(default_factory=list)
    cameraMovement: EntryList = Field(default_factory=list)
    lightingStyles: EntryList = Field(default_factory=list)
    colorPalettes: EntryList = Field(default_factory=list)
    atmosphere: EntryList = Field(default_factory=list)

    def snippets_for(self, controls: VisualControls) -> dict[str, list[str]]:
        """Prompt snippets for each selected option the glossary knows about."""
        snippets: dict[str, list[str]] = {}
        for category, ids in controls.selected().items():
            by_id = {entry.id: entry.promptSnippet for entry in getattr(self, category)}
            found = [by_id[i] for i in dict.fromkeys(ids) if i in by_id]
            if found:
                snippets[category] = found
        return snippets


class ImagePromptPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    vision_seed_text: RequiredText
    model: ImageModel
    selectedOptions: VisualControls = Field(default_factory=VisualControls)
    glossary: Glossary = Field(default_factory=Glossary)
    mood_profile: OptionalText = None
    constraints: OptionalText = None


class VideoPlanPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    vision_seed_text: RequiredText
    script_text: RequiredText
    tone: Tone
    visual_style: VisualStyle
    aspect_ratio: AspectRatio
    mood_profile: OptionalText = None
    cinematic_control_options: Optional[VisualControls] = None
    planner_context: OptionalText = None


class LoopSequencePayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    vision_seed_text: RequiredText
    start_frame_description: RequiredText
    loop_length: LoopLength = None
    mood_profile: OptionalText = None
    cameraAngles: StringList = Field(default_factory=list)
    shotSizes: StringList = Field(default_factory=list)
    composition: StringList = Field(default_factory=list)
    cameraMovement: StringList = Field(default_factory=list)
    lightingStyles: StringList = Field(default_factory=list)
    colorPalettes: StringList = Field(default_factory=list)
    atmosphere: StringList = Field(default_factory=list)


# Envelopes ignore unknown top-level keys: credentials travel there.

class ImagePromptRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mode: Literal["image_prompt"]
    payload: ImagePromptPayload
    images: ImageRefs = Field(default_factory=list)


class VideoPlanRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mode: Literal["video_plan"]
    payload: VideoPlanPayload
    images: ImageRefs = Field(default_factory=list)


class LoopSequenceRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mode: Literal["loop_sequence"]
    payload: LoopSequencePayload
    images: ImageRefs = Field(default_factory=list)


DirectorRequest = Union[ImagePromptRequest, VideoPlanRequest, LoopSequenceRequest]

_ENVELOPES: dict[str, type[BaseModel]] = {
    "image_prompt": ImagePromptRequest,
    "video_plan": VideoPlanRequest,
    "loop_sequence": LoopSequenceRequest,
}


@dataclass
class ValidationResult:
    ok: bool
    value: DirectorRequest | None = None
    errors: list[str] = field(default_factory=list)


def format_errors(exc: ValidationError) -> list[str]:
    """Render pydantic errors as ``field.path: message`` strings."""
    messages = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "body"
        msg = err["msg"]
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        if err["type"] == "extra_forbidden":
            msg = "unknown field"
        messages.append(f"{loc}: {msg}")
    return messages


def parse_request_body(raw: bytes | str) -> Any:
    """Decode a raw request body; the only hard failure of validation."""
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidBody(details={"reason": str(e)}) from e


def validate_director_request(body: Any) -> ValidationResult:
    """Validate an already-decoded body. Never raises for malformed input."""
    if not isinstance(body, dict):
        return ValidationResult(ok=False, errors=["body: must be a JSON object"])

    mode = body.get("mode")
    if not isinstance(mode, str) or mode not in _ENVELOPES:
        return ValidationResult(ok=False, errors=[f"mode: must be one of {', '.join(MODES)}"])

    try:
        value = _ENVELOPES[mode].model_validate(body)
    except ValidationError as e:
        return ValidationResult(ok=False, errors=format_errors(e))
    return ValidationResult(ok=True, value=value)
