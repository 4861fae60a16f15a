"""
Grab debouncer with gesture lifecycle awareness.

Turns the per-frame closed/open classification into grab triggers:
    - rising_edge: fire ONCE when the fist closes, then block until the
      hand opens (or is lost) before it can fire again.
    - every_frame: fire on every frame the fist is closed.

Optional smoothing: the fist only counts as closed after
``min_closed_frames`` consecutive closed frames. One frame means no
smoothing at all.
"""

import logging

logger = logging.getLogger(__name__)

RISING_EDGE = "rising_edge"
EVERY_FRAME = "every_frame"
TRIGGER_MODES = (RISING_EDGE, EVERY_FRAME)


class GrabDebouncer:
    """Fire-once (or fire-always) grab trigger with consecutive-frame gate."""

    def __init__(self, config: dict = None):
        config = config or {}
        mode = config.get("trigger_mode", RISING_EDGE)
        if mode not in TRIGGER_MODES:
            logger.warning("Unknown grab trigger mode '%s', using %s", mode, RISING_EDGE)
            mode = RISING_EDGE
        self._mode = mode
        self._min_closed_frames = max(1, int(config.get("min_closed_frames", 1)))

        self._closed_streak = 0
        self._fired = False  # rising_edge: fired, awaiting release

    def update(self, closed: bool) -> bool:
        """Feed one frame's raw classification.

        Returns:
            True if the grab callback should fire on this frame.
        """
        if not closed:
            if self._fired:
                logger.debug("Fist released, grab re-armed")
            self._closed_streak = 0
            self._fired = False
            return False

        self._closed_streak += 1
        if self._closed_streak < self._min_closed_frames:
            return False

        if self._mode == EVERY_FRAME:
            return True

        if self._fired:
            return False
        self._fired = True
        return True

    @property
    def is_closed(self) -> bool:
        """Debounced closed state."""
        return self._closed_streak >= self._min_closed_frames

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def min_closed_frames(self) -> int:
        return self._min_closed_frames

    def reset(self):
        """Clear all state."""
        self._closed_streak = 0
        self._fired = False
