"""
Text-to-speech playback channel (gTTS synthesis, pydub playback).

Publishes ``playback_started`` right before audio begins and always
publishes ``playback_ended``, even when synthesis or playback fails, so
listeners waiting for the end of speech can never stall.
"""

import os
import logging
import tempfile
import threading

from gtts import gTTS
from gtts.tts import gTTSError
from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError
from pydub.playback import play

from core.events import EventBus, Events

logger = logging.getLogger(__name__)


class SpeechPlaybackChannel:
    """Speaks one utterance at a time in the requested language."""

    def __init__(self, config: dict = None, event_bus: EventBus = None):
        config = config or {}
        self._default_language = config.get("default_language", "en")
        self._slow = config.get("slow", False)
        self._bus = event_bus or EventBus()
        self._lock = threading.Lock()
        self._speaking = False

    def speak(self, text: str, language_code: str = None) -> bool:
        """Synthesize and play ``text``. Blocks until playback finishes.

        Returns:
            True if the audio played to the end.
        """
        text = (text or "").strip()
        language = language_code or self._default_language
        success = False
        path = None

        with self._lock:
            try:
                if not text:
                    logger.warning("Nothing to speak")
                    return False

                tts, language = self._build_tts(text, language)
                path = _temp_mp3()
                tts.save(path)
                segment = AudioSegment.from_file(path, format="mp3")

                self._speaking = True
                self._bus.emit(Events.PLAYBACK_STARTED, text=text, language=language)
                logger.info("Speaking (%s): %s", language, text)
                play(segment)
                success = True
            except (gTTSError, ValueError, OSError, CouldntDecodeError) as e:
                logger.error("Speech playback failed: %s", e)
            finally:
                self._speaking = False
                if path:
                    _remove_quietly(path)
                self._bus.emit(Events.PLAYBACK_ENDED, text=text, language=language, success=success)

        return success

    def _build_tts(self, text: str, language: str):
        """gTTS for the first supported candidate: 'pt-BR' -> 'pt-BR', 'pt', default."""
        candidates = [language]
        primary = language.split("-")[0]
        if primary != language:
            candidates.append(primary)
        if self._default_language not in candidates:
            candidates.append(self._default_language)

        last_error = None
        for candidate in candidates:
            try:
                return gTTS(text=text, lang=candidate, slow=self._slow), candidate
            except ValueError as e:
                last_error = e
                logger.warning("Language '%s' not supported for speech: %s", candidate, e)
        raise last_error

    @property
    def is_speaking(self) -> bool:
        return self._speaking


def _temp_mp3() -> str:
    with tempfile.NamedTemporaryFile(suffix=".mp3", delete=False) as f:
        return f.name


def _remove_quietly(path: str):
    try:
        os.remove(path)
    except OSError:
        pass
