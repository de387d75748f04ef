from pydantic import BaseModel
from typing import List, Optional

from .video_plan import ContinuityLock


class LoopContinuityLock(ContinuityLock):
    emotional_trajectory: Optional[str] = None


class LoopCycle(BaseModel):
    segment_title: str = ""
    scene_description: str = ""
    main_subject: str = ""
    camera_movement: str = ""
    visual_tone: str = ""
    motion: str = ""
    mood: str = ""
    narrative: str = ""
    sound_suggestion: Optional[str] = None
    continuity_lock: LoopContinuityLock
    acceptance_check: List[str]


class LoopSequence(BaseModel):
    """Response shape requested from the provider for ``loop_sequence``."""
    cycles: List[LoopCycle]


# ---------------------------------------------------------------------------
# Incremental loop cycles
# ---------------------------------------------------------------------------

class LoopStoryBeat(BaseModel):
    title: str
    summary: str
    continuity_lock: ContinuityLock
    acceptance_check: List[str]


class LoopEndFrame(BaseModel):
    frame_prompt: str
    motion_guidance: str
    transition_signal: str


class NextLoopCycle(BaseModel):
    """One cycle appended to a running loop, with its hand-off end frame."""
    cycle: int
    storyBeat: LoopStoryBeat
    endFrame: LoopEndFrame
    autopilot_directive: str
