"""
Frame pipeline: capture -> keypoints -> fist state -> grab dispatch.

One ``tick()`` processes the latest camera frame. The dialogue runs on
its own event-driven path and is never touched from here.
"""

import logging

import cv2

logger = logging.getLogger(__name__)


class PipelineResult:
    """Result of a single pipeline iteration."""

    __slots__ = ("frame", "frame_id", "hands", "fist", "fist_closed")

    def __init__(self):
        self.frame = None
        self.frame_id = 0
        self.hands = []
        self.fist = None
        self.fist_closed = False


class Pipeline:
    """Composable gesture pipeline around a keypoint source."""

    def __init__(self, camera, detector, gesture_detector):
        self._camera = camera
        self._detector = detector
        self._gesture = gesture_detector
        self._frame_count = 0
        self._last_frame_id = None

    def tick(self) -> PipelineResult:
        """Execute one pipeline iteration on the newest frame."""
        result = PipelineResult()

        frame_id, frame = self._camera.read()
        if frame is None or frame_id == self._last_frame_id:
            return result

        self._last_frame_id = frame_id
        self._frame_count += 1
        result.frame_id = frame_id

        rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        hands = self._detector.detect(rgb_frame)

        result.hands = hands
        result.fist = self._gesture.on_results(hands)
        result.fist_closed = self._gesture.fist_closed
        result.frame = frame
        return result

    @property
    def frame_count(self) -> int:
        return self._frame_count
