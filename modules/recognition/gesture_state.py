"""
Gesture state detector: per-frame keypoint results -> fist state + grab events.
"""

import time
import logging
from typing import Callable, List, Optional

from core.events import EventBus, Events
from core.types import FistResult, GestureState, HandObservation
from modules.control.debouncer import GrabDebouncer
from modules.recognition.fist_classifier import is_fist_closed

logger = logging.getLogger(__name__)

GrabCallback = Callable[[List[HandObservation]], None]


class GestureStateDetector:
    """Owns GestureState and dispatches grab callbacks.

    Only the first hand of each frame is classified. Must be driven from a
    single thread (the frame loop).
    """

    def __init__(self, config: dict = None, on_hand_grab: Optional[GrabCallback] = None,
                 event_bus: EventBus = None):
        self._debouncer = GrabDebouncer(config or {})
        self._on_hand_grab = on_hand_grab
        self._bus = event_bus or EventBus()
        self._state = GestureState()
        self._last_result = FistResult.open()
        self._hand_present = False
        self._grab_count = 0

    def on_results(self, hands: List[HandObservation]) -> FistResult:
        """Process one frame of keypoint-source output.

        Args:
            hands: detected hands for this frame (may be empty)

        Returns:
            The raw FistResult for the first hand (open if none).
        """
        hands = hands or []
        result = is_fist_closed(hands[0]) if hands else FistResult.open()
        self._last_result = result
        self._track_presence(bool(hands))

        fire = self._debouncer.update(result.result)

        self._state.closed = self._debouncer.is_closed
        self._state.centroid = result.centroid if self._state.closed else None
        self._state.updated_at = time.time()

        if fire:
            self._dispatch_grab(hands, result)

        return result

    def _track_presence(self, present: bool):
        if present and not self._hand_present:
            self._bus.emit(Events.HAND_DETECTED)
        elif not present and self._hand_present:
            self._bus.emit(Events.HAND_LOST)
        self._hand_present = present

    def _dispatch_grab(self, hands, result: FistResult):
        self._grab_count += 1
        logger.debug("Grab #%d at %s", self._grab_count, result.centroid)

        if self._on_hand_grab is not None:
            try:
                self._on_hand_grab(hands)
            except Exception as e:
                logger.error("Grab callback failed: %s", e)

        self._bus.emit(Events.HAND_GRAB, hands=hands, centroid=result.centroid)

    def set_grab_callback(self, callback: Optional[GrabCallback]):
        self._on_hand_grab = callback

    def reset(self):
        self._debouncer.reset()
        self._state = GestureState()
        self._last_result = FistResult.open()
        self._hand_present = False

    @property
    def state(self) -> GestureState:
        return self._state

    @property
    def fist_closed(self) -> bool:
        return self._state.closed

    @property
    def last_result(self) -> FistResult:
        return self._last_result

    @property
    def grab_count(self) -> int:
        return self._grab_count
