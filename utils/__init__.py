# Avatar Voice Agent - Utils Package
from .audio_utils import *
from .scheduling import ControlLoop, TimerHandle

__all__ = [
    "ControlLoop",
    "TimerHandle",
]
