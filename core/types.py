"""
Shared domain types for the Grab & Talk demo.

Centralizes enums and data classes used across the gesture and dialogue
modules to eliminate circular imports and ensure type consistency.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


Point = Tuple[float, float]


# =============================================================================
# Hand Keypoints
# =============================================================================

@dataclass(frozen=True)
class Keypoint:
    """A named 2-D landmark on a tracked hand, in image pixel coordinates."""

    x: float
    y: float
    name: str

    @property
    def is_fingertip(self) -> bool:
        return "tip" in self.name

    @property
    def is_knuckle(self) -> bool:
        return "mcp" in self.name


@dataclass
class HandObservation:
    """All keypoints of one tracked hand in one frame.

    Transient: produced fresh by the keypoint source every frame and owned
    by that frame.
    """

    keypoints: List[Keypoint] = field(default_factory=list)
    handedness: Optional[str] = None
    score: Optional[float] = None

    def __len__(self):
        return len(self.keypoints)

    def __iter__(self):
        return iter(self.keypoints)


@dataclass(frozen=True)
class FistResult:
    """Per-frame fist classification.

    ``centroid`` is the fingertip centroid when ``result`` is True, else None.
    """

    result: bool
    centroid: Optional[Point] = None

    @classmethod
    def open(cls) -> "FistResult":
        return cls(False, None)


@dataclass
class GestureState:
    """Derived gesture state, mutated once per frame by the detector."""

    closed: bool = False
    centroid: Optional[Point] = None
    updated_at: float = 0.0


# =============================================================================
# Conversation
# =============================================================================

class ControllerState(Enum):
    """Modes of the turn-taking controller. Exactly one is active."""
    LISTENING = "listening"
    AWAITING_LANGUAGE_DETECTION = "awaiting_language_detection"
    AWAITING_REPLY = "awaiting_reply"
    SPEAKING = "speaking"
    COOLDOWN_BEFORE_RESUME = "cooldown_before_resume"

    @property
    def turn_in_flight(self) -> bool:
        return self is not ControllerState.LISTENING

    @property
    def capture_suspended(self) -> bool:
        """Whether speech capture must stay off in this mode."""
        return self in (ControllerState.SPEAKING, ControllerState.COOLDOWN_BEFORE_RESUME)


@dataclass
class ConversationTurn:
    """One listen -> detect-language -> respond -> speak cycle."""

    spoken_text: str
    detected_language: Optional[str] = None
    reply: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def duration(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def __repr__(self):
        return (
            f"ConversationTurn(spoken={self.spoken_text!r}, "
            f"lang={self.detected_language!r}, reply={self.reply!r})"
        )
