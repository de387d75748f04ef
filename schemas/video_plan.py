from pydantic import BaseModel, Field, field_validator
from typing import List, Optional


class ContinuityLock(BaseModel):
    """Visual facts every later scene or cycle must preserve."""
    subject_identity: str
    lighting_and_palette: str
    camera_grammar: str
    environment_motif: str

    @field_validator("subject_identity", "lighting_and_palette", "camera_grammar", "environment_motif")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()


class SceneJSON(BaseModel):
    segment_title: str
    scene_description: str
    main_subject: str = ""
    camera_movement: str = ""
    visual_tone: str = ""
    motion: str = ""
    mood: str = ""
    narrative: str = ""
    sound_suggestion: Optional[str] = None
    text_overlay: Optional[str] = None
    voice_timing_hint: Optional[str] = None
    broll_suggestions: Optional[str] = None
    graphics_callouts: Optional[str] = None
    editor_notes: Optional[str] = None
    continuity_lock: ContinuityLock
    acceptance_check: List[str] = Field(default_factory=list)


class VideoPlan(BaseModel):
    """Scene-by-scene plan returned for ``video_plan`` requests."""
    scenes: List[SceneJSON]
    thumbnailConcept: str = ""
