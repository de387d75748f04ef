from .director_result import DirectorCoreResult, MediaAsset, MediaFrame
from .video_plan import ContinuityLock, SceneJSON, VideoPlan
from .loop_sequence import (
    LoopContinuityLock,
    LoopCycle,
    LoopEndFrame,
    LoopSequence,
    LoopStoryBeat,
    NextLoopCycle,
)

__all__ = [
    "DirectorCoreResult", "MediaAsset", "MediaFrame",
    "ContinuityLock", "SceneJSON", "VideoPlan",
    "LoopContinuityLock", "LoopCycle", "LoopSequence",
    "LoopStoryBeat", "LoopEndFrame", "NextLoopCycle",
]
