"""
MediaPipe hand detection wrapper producing named pixel-space keypoints.

Keypoint names are the MediaPipe landmark enum names in lower case
(``wrist``, ``thumb_tip``, ``index_finger_mcp``, ...), so fingertips carry
"tip" and base knuckles carry "mcp".
"""

import logging
from typing import List

import numpy as np
import mediapipe as mp

from core.types import HandObservation, Keypoint

logger = logging.getLogger(__name__)


def landmark_names(hand_landmark_enum) -> List[str]:
    """Index-ordered keypoint names for MediaPipe's HandLandmark enum."""
    return [lm.name.lower() for lm in sorted(hand_landmark_enum, key=lambda lm: lm.value)]


class HandDetector:
    """MediaPipe Hands wrapper acting as the per-frame keypoint source."""

    def __init__(self, config: dict):
        self._model_complexity = config.get("model_complexity", 0)
        self._max_hands = config.get("max_num_hands", 2)
        self._min_detect_conf = config.get("min_detection_confidence", 0.6)
        self._min_track_conf = config.get("min_tracking_confidence", 0.5)

        self._mp_hands = mp.solutions.hands
        self._names = landmark_names(self._mp_hands.HandLandmark)

        self._hands = None
        self._initialized = False

    def initialize(self):
        """Initialize MediaPipe Hands solution."""
        self._hands = self._mp_hands.Hands(
            static_image_mode=False,
            model_complexity=self._model_complexity,
            max_num_hands=self._max_hands,
            min_detection_confidence=self._min_detect_conf,
            min_tracking_confidence=self._min_track_conf,
        )
        self._initialized = True
        logger.info(
            "MediaPipe Hands initialized (complexity=%d, max_hands=%d, "
            "detect_conf=%.2f, track_conf=%.2f)",
            self._model_complexity, self._max_hands,
            self._min_detect_conf, self._min_track_conf,
        )

    def detect(self, rgb_frame: np.ndarray) -> List[HandObservation]:
        """Run hand detection on an RGB frame.

        Args:
            rgb_frame: Frame in RGB color space

        Returns:
            One HandObservation per detected hand (empty list if none)
        """
        if not self._initialized:
            self.initialize()

        # Set frame as non-writable for performance
        rgb_frame.flags.writeable = False
        results = self._hands.process(rgb_frame)
        rgb_frame.flags.writeable = True

        h, w = rgb_frame.shape[:2]
        return self.to_observations(results, w, h)

    def to_observations(self, results, width: int, height: int) -> List[HandObservation]:
        """Convert a MediaPipe results object to pixel-space observations."""
        if results is None or not results.multi_hand_landmarks:
            return []

        handedness_list = results.multi_handedness or []
        observations = []
        for i, hand_landmarks in enumerate(results.multi_hand_landmarks):
            keypoints = [
                Keypoint(x=lm.x * width, y=lm.y * height, name=self._names[idx])
                for idx, lm in enumerate(hand_landmarks.landmark)
                if idx < len(self._names)
            ]

            label, score = None, None
            if i < len(handedness_list) and handedness_list[i].classification:
                c = handedness_list[i].classification[0]
                label = getattr(c, "label", None)
                score = float(getattr(c, "score", 0.0))

            observations.append(HandObservation(keypoints=keypoints, handedness=label, score=score))

        return observations

    def close(self):
        """Release MediaPipe resources."""
        if self._hands:
            self._hands.close()
            self._hands = None
            self._initialized = False
            logger.info("MediaPipe Hands closed")

    def __enter__(self):
        self.initialize()
        return self

    def __exit__(self, *args):
        self.close()
