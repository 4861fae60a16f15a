"""
Real-time overlay: hand keypoints, fist status, AI response and dialogue state.
"""

import logging
import textwrap

import cv2
import numpy as np

logger = logging.getLogger(__name__)

_STATE_LABELS = {
    "listening": "Listening...",
    "awaiting_language_detection": "Thinking...",
    "awaiting_reply": "Thinking...",
    "speaking": "Speaking",
    "cooldown_before_resume": "Waiting...",
}


class Dashboard:
    """Renders the demo overlay on BGR frames."""

    def __init__(self, config: dict = None):
        config = config or {}
        self._show_keypoints = config.get("show_keypoints", True)
        self._keypoint_radius = config.get("keypoint_radius", 5)

        colors = config.get("colors", {})
        self._color_text = tuple(colors.get("text", [255, 255, 255]))
        self._color_keypoint = tuple(colors.get("keypoint", [0, 255, 0]))
        self._color_grab = tuple(colors.get("grab", [0, 0, 255]))
        self._color_reply = tuple(colors.get("reply", [255, 200, 0]))

        self._bar_height = config.get("bar_height", 70)
        self._bar_opacity = config.get("bar_opacity", 0.7)
        self._wrap_chars = config.get("reply_wrap_chars", 60)

    def render(self, frame: np.ndarray, state: dict) -> np.ndarray:
        """Render the overlay.

        Args:
            frame: BGR frame to draw on
            state: dict with
                - hands: list of HandObservation
                - fist_closed: bool
                - centroid: (x, y) or None
                - ai_response: str
                - dialogue_state: str (ControllerState value) or None

        Returns:
            Frame with overlay
        """
        h, w = frame.shape[:2]

        if self._show_keypoints:
            for hand in state.get("hands") or []:
                self._draw_keypoints(frame, hand)

        self._draw_reply_bar(frame, w, state.get("ai_response") or "")

        if state.get("fist_closed"):
            self._draw_grab(frame, w, h, state.get("centroid"))

        dialogue_state = state.get("dialogue_state")
        if dialogue_state:
            label = _STATE_LABELS.get(dialogue_state, dialogue_state)
            cv2.putText(frame, label, (15, h - 15),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.6, self._color_text, 1)

        return frame

    def _draw_keypoints(self, frame, hand):
        for kp in hand.keypoints:
            cv2.circle(frame, (int(kp.x), int(kp.y)), self._keypoint_radius,
                       self._color_keypoint, -1)

    def _draw_reply_bar(self, frame, w, reply):
        overlay = frame.copy()
        cv2.rectangle(overlay, (0, 0), (w, self._bar_height), (20, 20, 20), -1)
        cv2.addWeighted(overlay, self._bar_opacity, frame, 1 - self._bar_opacity, 0, frame)

        lines = textwrap.wrap(f"AI Response: {reply}", self._wrap_chars)[:2]
        for i, line in enumerate(lines):
            cv2.putText(frame, line, (15, 28 + i * 26),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.6, self._color_reply, 1)

    def _draw_grab(self, frame, w, h, centroid):
        text = "Fist grabbed!"
        text_size = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, 1.0, 2)[0]
        x = (w - text_size[0]) // 2
        cv2.putText(frame, text, (x, h - 50),
                    cv2.FONT_HERSHEY_SIMPLEX, 1.0, self._color_grab, 2)

        if centroid is not None:
            cv2.circle(frame, (int(centroid[0]), int(centroid[1])), 12, self._color_grab, 2)
