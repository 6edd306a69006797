"""Puzzle engines, one per quest room."""

from __future__ import annotations

from .aurora import AuroraRoom, EmotionScore, EmotionScorer, GeneratorEmotionScorer
from .base import RoomEngine, RoomResult
from .comet import CometRoom
from .cradle import CradleRoom
from .nebula import NebulaRoom
from .nova import NovaQuestion, NovaReward, NovaRoom

__all__ = [
    "AuroraRoom",
    "CometRoom",
    "CradleRoom",
    "EmotionScore",
    "EmotionScorer",
    "GeneratorEmotionScorer",
    "NebulaRoom",
    "NovaQuestion",
    "NovaReward",
    "NovaRoom",
    "RoomEngine",
    "RoomResult",
]
