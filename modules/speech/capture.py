"""
Continuous speech-to-text capture channel.

Wraps ``speech_recognition``'s background listener. Finalized transcripts
and channel errors are published on the event bus; the channel never
decides on its own when to resume after an error.
"""

import logging
import threading

import speech_recognition as sr

from core.events import EventBus, Events

logger = logging.getLogger(__name__)


class SpeechCaptureChannel:
    """Microphone -> transcript channel with start/abort/stop lifecycle.

    ``abort()`` stops immediately and discards any recognition still in
    flight; ``stop()`` also waits for the listener thread to exit.
    """

    def __init__(self, config: dict = None, event_bus: EventBus = None,
                 recognizer=None, microphone_factory=None):
        config = config or {}
        self._language = config.get("recognition_language", "en-US")
        self._phrase_time_limit = config.get("phrase_time_limit", 10)
        self._ambient_duration = config.get("ambient_noise_seconds", 1.0)

        self._bus = event_bus or EventBus()
        self._recognizer = recognizer or sr.Recognizer()
        self._microphone_factory = microphone_factory or sr.Microphone

        self._lock = threading.Lock()
        self._stop_listening = None
        self._generation = 0  # bumped on every start/abort/stop
        self._calibrated = False

    def start(self) -> bool:
        """Start listening. No-op if already active.

        Returns:
            True if the channel is listening after the call.
        """
        with self._lock:
            if self._stop_listening is not None:
                return True
            self._generation += 1
            generation = self._generation

        try:
            microphone = self._microphone_factory()
            if not self._calibrated:
                with microphone as source:
                    self._recognizer.adjust_for_ambient_noise(source, duration=self._ambient_duration)
                self._calibrated = True
            stopper = self._recognizer.listen_in_background(
                microphone,
                self._make_callback(generation),
                phrase_time_limit=self._phrase_time_limit,
            )
        except (OSError, AttributeError) as e:
            # No input device, or PyAudio is not installed
            logger.error("Could not open microphone: %s", e)
            self._bus.emit(Events.CAPTURE_ERROR, error=e)
            return False

        with self._lock:
            if generation != self._generation:
                # aborted while the microphone was opening
                stopper(wait_for_stop=False)
                return False
            self._stop_listening = stopper

        logger.info("Speech capture started (language=%s)", self._language)
        return True

    def abort(self):
        """Stop listening now, dropping in-flight recognition results."""
        if self._halt(wait=False):
            logger.info("Speech capture aborted")

    def stop(self):
        """Stop listening and wait for the listener thread to finish."""
        if self._halt(wait=True):
            logger.info("Speech capture stopped")

    def _halt(self, wait: bool) -> bool:
        with self._lock:
            self._generation += 1
            stopper = self._stop_listening
            self._stop_listening = None
        if stopper is None:
            return False
        stopper(wait_for_stop=wait)
        return True

    def _make_callback(self, generation: int):
        def on_audio(recognizer, audio):
            if generation != self._generation:
                return
            try:
                text = recognizer.recognize_google(audio, language=self._language)
            except sr.UnknownValueError:
                logger.debug("Speech not understood")
                return
            except sr.RequestError as e:
                if generation != self._generation:
                    return
                logger.error("Speech recognition error: %s", e)
                # The listener thread is the caller here; never join it.
                self._halt(wait=False)
                self._bus.emit(Events.CAPTURE_ERROR, error=e)
                return

            # Aborted during the network round trip
            if generation != self._generation:
                logger.debug("Discarding transcript from aborted capture: %r", text)
                return

            text = (text or "").strip()
            if text:
                logger.info("User said: %s", text)
                self._bus.emit(Events.TRANSCRIPT_FINAL, text=text)

        return on_audio

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._stop_listening is not None

    @property
    def language(self) -> str:
        return self._language
