from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Literal, Optional


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class MediaFrame(_CamelModel):
    url: Optional[str] = None
    base64: Optional[str] = None
    mime_type: Optional[str] = None
    caption: Optional[str] = None


class MediaAsset(_CamelModel):
    """One generated asset, whatever shape the provider returned it in."""
    id: Optional[str] = None
    kind: Literal["image", "video", "audio", "unknown"] = "unknown"
    mime_type: Optional[str] = None
    url: Optional[str] = None
    base64: Optional[str] = Field(None, description="Inline data when no URL is provided")
    caption: Optional[str] = None
    poster_url: Optional[str] = None
    poster_base64: Optional[str] = None
    frames: List[MediaFrame] = Field(default_factory=list)
    duration_seconds: Optional[float] = None
    frame_rate: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class DirectorCoreResult(_CamelModel):
    """Normalized gateway output for every mode, success or failure."""
    success: bool
    mode: Optional[str] = None
    result: Optional[Any] = Field(None, description="str for image prompts, plan object for video/loop")
    text: Optional[str] = None
    fallback_text: Optional[str] = None
    media: List[MediaAsset] = Field(default_factory=list)
    error: Optional[str] = None
    kind: Optional[str] = Field(None, description="Error kind when success is false")
    provider: Optional[str] = None
    status: Optional[int] = None
    retryable: Optional[bool] = Field(None, description="Set on failures; only provider errors are worth retrying")
    details: Optional[Any] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
