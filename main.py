#!/usr/bin/env python3
"""
Grab & Talk - hand-grab detection with a spoken AI dialogue.
Main application entry point.

Architecture:
    - core.Pipeline handles the capture -> keypoints -> fist-state cycle
    - core.TurnTakingController runs the listen/respond/speak dialogue
    - core.EventBus decouples the speech channels from the controller

Usage:
    python main.py                        # Camera + voice dialogue
    python main.py --no-voice             # Gesture overlay only
    python main.py --trigger-mode every_frame
"""

import sys
import os
import signal
import argparse
import logging

import cv2

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from modules.utils.config import Config, ConfigError
from modules.utils.logger import setup_logging, ConversationLogger
from modules.capture.camera_manager import CameraManager
from modules.detection.hand_detector import HandDetector
from modules.recognition.gesture_state import GestureStateDetector
from modules.control.debouncer import TRIGGER_MODES
from modules.visualization.dashboard import Dashboard

from core.events import EventBus, Events
from core.pipeline import Pipeline

logger = logging.getLogger(__name__)


def build_controller(config: Config, bus: EventBus):
    """Wire the speech channels and remote services into a controller.

    Raises:
        ConfigError: API settings are missing from the environment
    """
    # Imported here so --no-voice runs without audio libraries
    from core.conversation import TurnTakingController
    from modules.dialogue.client import ChatCompletionClient
    from modules.dialogue.responder import DialogueResponder, LanguageDetector
    from modules.speech.capture import SpeechCaptureChannel
    from modules.speech.playback import SpeechPlaybackChannel

    dialogue_cfg = config.dialogue
    client = ChatCompletionClient(
        config.api, timeout=dialogue_cfg.get("timeout_seconds", 30),
    )
    default_language = dialogue_cfg.get("default_language", "en")

    controller_cfg = dict(config.speech)
    controller_cfg["default_language"] = default_language

    return TurnTakingController(
        capture=SpeechCaptureChannel(config.speech, event_bus=bus),
        language_detector=LanguageDetector(client, default_language=default_language),
        responder=DialogueResponder(client, dialogue_cfg),
        playback=SpeechPlaybackChannel({"default_language": default_language}, event_bus=bus),
        config=controller_cfg,
        event_bus=bus,
    )


class GrabTalkApp:
    """Main application: camera overlay plus optional voice dialogue."""

    def __init__(self, config: Config, voice: bool = True):
        self._config = config
        self._running = False

        self._bus = EventBus()

        self._camera = CameraManager(config.camera)
        self._detector = HandDetector(config.mediapipe)
        self._gesture = GestureStateDetector(
            config.gesture, on_hand_grab=self._on_hand_grab, event_bus=self._bus,
        )
        self._pipeline = Pipeline(self._camera, self._detector, self._gesture)
        self._dashboard = Dashboard(config.visualization)

        self._conversation_logger = ConversationLogger()
        self._controller = None
        if voice:
            try:
                self._controller = build_controller(config, self._bus)
            except ConfigError as e:
                logger.error("Voice dialogue disabled: %s", e)

        self._bus.subscribe(Events.TURN_COMPLETED, self._conversation_logger.log_turn)
        self._bus.subscribe(Events.TURN_FAILED, self._conversation_logger.log_failure)

        logger.info("GrabTalkApp initialized (voice=%s)", self._controller is not None)

    def _on_hand_grab(self, hands):
        logger.info("Grab event triggered!")

    def start(self) -> bool:
        """Open devices and run the main loop until quit."""
        if not self._camera.open():
            logger.error("Failed to open camera. Check connection and permissions.")
            return False

        self._camera.start_async()
        self._detector.initialize()

        if self._controller is not None:
            self._controller.start()

        self._bus.emit(Events.SYSTEM_STARTED)
        self._running = True
        self._run_main_loop()
        return True

    def _run_main_loop(self):
        window_name = self._config.get("visualization.window_name", "Grab & Talk")
        show = self._config.get("visualization.enabled", True)

        while self._running:
            result = self._pipeline.tick()

            if result.frame is not None and show:
                frame = self._dashboard.render(result.frame, self._build_state(result))
                cv2.imshow(window_name, frame)

            key = cv2.waitKey(1) & 0xFF
            if key == ord("q"):
                self._running = False

        self._shutdown()

    def _build_state(self, result) -> dict:
        state = {
            "hands": result.hands,
            "fist_closed": result.fist_closed,
            "centroid": self._gesture.state.centroid,
            "ai_response": "",
            "dialogue_state": None,
        }
        if self._controller is not None:
            state["ai_response"] = self._controller.last_reply
            state["dialogue_state"] = self._controller.state.value
        return state

    def _shutdown(self):
        """Clean shutdown of all modules."""
        logger.info("Shutting down...")
        self._running = False
        self._bus.emit(Events.SYSTEM_SHUTDOWN)
        if self._controller is not None:
            self._controller.shutdown()
        self._camera.stop()
        self._detector.close()
        cv2.destroyAllWindows()

        logger.info(
            "Shutdown complete (%d grabs, %d turns, %d dropped)",
            self._gesture.grab_count,
            self._conversation_logger.total_turns,
            self._conversation_logger.failed_turns,
        )

    def handle_signal(self, signum, frame):
        """Handle SIGINT/SIGTERM for graceful shutdown."""
        logger.info("Signal %d received, shutting down...", signum)
        self._running = False


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Grab & Talk - hand-grab detection with a spoken AI dialogue"
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Path to config.yaml"
    )
    parser.add_argument(
        "--camera", type=int, default=None,
        help="Camera device ID"
    )
    parser.add_argument(
        "--no-voice", action="store_true",
        help="Run the gesture overlay without the voice dialogue"
    )
    parser.add_argument(
        "--trigger-mode", choices=TRIGGER_MODES, default=None,
        help="When the grab callback fires"
    )
    parser.add_argument(
        "--log-level", type=str, default=None,
        help="Logging level (DEBUG, INFO, ...)"
    )
    return parser.parse_args(argv)


def main():
    args = parse_args()

    config = Config()
    config.load(config_path=args.config)

    if args.camera is not None:
        config.set("camera.device_id", args.camera)
    if args.trigger_mode is not None:
        config.set("gesture.trigger_mode", args.trigger_mode)

    log_cfg = config.get_section("logging")
    setup_logging(
        level=args.log_level or log_cfg.get("level", "INFO"),
        log_file=log_cfg.get("file"),
        max_size_mb=log_cfg.get("max_size_mb", 10),
        backup_count=log_cfg.get("backup_count", 3),
    )

    logger.info("=" * 60)
    logger.info("  GRAB & TALK")
    logger.info("  Trigger mode: %s", config.get("gesture.trigger_mode"))
    logger.info("  Voice: %s", "off" if args.no_voice else "on")
    logger.info("=" * 60)

    app = GrabTalkApp(config, voice=not args.no_voice)

    signal.signal(signal.SIGINT, app.handle_signal)
    signal.signal(signal.SIGTERM, app.handle_signal)

    app.start()


if __name__ == "__main__":
    main()
