"""
Webcam reader that keeps only the newest frame.

A daemon thread drains the device so the pipeline never works on a stale
frame; ``read()`` hands out a numbered copy.
"""

import time
import threading
import logging
import cv2

logger = logging.getLogger(__name__)


class CameraManager:
    """Latest-frame webcam source for the pipeline tick."""

    def __init__(self, config: dict):
        self._device_id = config.get("device_id", 0)
        self._size = (config.get("width", 640), config.get("height", 480))
        self._fps = config.get("fps", 30)
        self._mirror = config.get("flip_horizontal", False)

        self._cap = None
        self._latest = None
        self._frame_id = 0
        self._lock = threading.Lock()
        self._running = False
        self._reader = None

    def open(self) -> bool:
        """Open the device and request the configured size and rate."""
        self._cap = cv2.VideoCapture(self._device_id)
        if not self._cap.isOpened():
            logger.error("Failed to open camera %d", self._device_id)
            self._cap = None
            return False

        width, height = self._size
        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self._cap.set(cv2.CAP_PROP_FPS, self._fps)
        logger.info("Camera %d opened at %dx%d", self._device_id, width, height)
        return True

    def start_async(self):
        if self._running or self._cap is None:
            return
        self._running = True
        self._reader = threading.Thread(target=self._drain, name="camera", daemon=True)
        self._reader.start()

    def _drain(self):
        while self._running:
            ok, frame = self._cap.read()
            if not ok or frame is None:
                time.sleep(0.005)
                continue
            if self._mirror:
                frame = cv2.flip(frame, 1)
            with self._lock:
                self._latest = frame
                self._frame_id += 1

    def read(self):
        """Return ``(frame_id, frame)`` for the newest frame, or ``(None, None)``."""
        with self._lock:
            if self._latest is None:
                return None, None
            return self._frame_id, self._latest.copy()

    def stop(self):
        """Stop the reader thread and release the device."""
        self._running = False
        if self._reader is not None and self._reader.is_alive():
            self._reader.join(timeout=2.0)
        self._reader = None
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        logger.info("Camera stopped")
