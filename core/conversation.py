"""
Turn-taking controller for the spoken dialogue.

Serializes listen -> detect-language -> respond -> speak -> resume exactly
once per accepted transcript and keeps the microphone off while synthesized
speech is playing, so the assistant never transcribes its own voice.

States:
    LISTENING                    capture active, waiting for a transcript
    AWAITING_LANGUAGE_DETECTION  remote language-code call in flight
    AWAITING_REPLY               remote reply call in flight
    SPEAKING                     playback running, capture aborted
    COOLDOWN_BEFORE_RESUME       playback done, waiting out the acoustic tail

Inputs arrive as event-bus events from the capture and playback channels
(on their own threads); each turn runs on a worker supplied by ``runner``.
All state changes happen under one re-entrant lock.
"""

import time
import logging
import threading

from core.events import EventBus, Events
from core.types import ControllerState, ConversationTurn
from modules.control.restart_policy import RestartPolicy

logger = logging.getLogger(__name__)


def _run_in_thread(target, *args):
    thread = threading.Thread(target=target, args=args, name="dialogue-turn", daemon=True)
    thread.start()
    return thread


class TurnTakingController:
    """One-turn-at-a-time dialogue state machine.

    Args:
        capture: speech capture channel (start/abort/stop)
        language_detector: object with detect_language(text) -> str
        responder: object with get_reply(text) -> str
        playback: speech playback channel with speak(text, language_code)
        config: speech/dialogue tunables (cooldown_seconds, default_language,
            restart_* keys for the RestartPolicy)
        event_bus: bus carrying channel events (default: the shared bus)
        restart_policy: delay schedule for capture-error restarts
        runner: callable(target, *args) executing a turn off the caller's thread
        timer_factory: callable(delay, fn) -> object with start()/cancel()
    """

    def __init__(self, capture, language_detector, responder, playback,
                 config: dict = None, event_bus: EventBus = None,
                 restart_policy: RestartPolicy = None, runner=None, timer_factory=None):
        config = config or {}
        self._capture = capture
        self._language_detector = language_detector
        self._responder = responder
        self._playback = playback
        self._bus = event_bus or EventBus()

        self._cooldown_seconds = float(config.get("cooldown_seconds", 4.0))
        self._default_language = config.get("default_language", "en")
        self._restart_policy = restart_policy or RestartPolicy(config)
        self._runner = runner or _run_in_thread
        self._timer_factory = timer_factory or threading.Timer

        self._lock = threading.RLock()
        self._state = ControllerState.LISTENING
        self._turn = None
        self._last_spoken = ""
        self._last_reply = ""
        self._resume_timer = None
        self._restart_timer = None
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Subscribe to channel events and start listening."""
        with self._lock:
            if self._running:
                return
            self._running = True

        self._bus.subscribe(Events.TRANSCRIPT_FINAL, self.on_final_transcript)
        self._bus.subscribe(Events.CAPTURE_ERROR, self.on_capture_error)
        self._bus.subscribe(Events.PLAYBACK_STARTED, self.on_playback_started)
        self._bus.subscribe(Events.PLAYBACK_ENDED, self.on_playback_ended)

        logger.info("Turn-taking controller started (cooldown=%.1fs)", self._cooldown_seconds)
        self._capture.start()

    def shutdown(self):
        """Cancel pending timers, unsubscribe and stop capture."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._cancel_timers()
            self._turn = None
            self._set_state(ControllerState.LISTENING)

        self._bus.unsubscribe(Events.TRANSCRIPT_FINAL, self.on_final_transcript)
        self._bus.unsubscribe(Events.CAPTURE_ERROR, self.on_capture_error)
        self._bus.unsubscribe(Events.PLAYBACK_STARTED, self.on_playback_started)
        self._bus.unsubscribe(Events.PLAYBACK_ENDED, self.on_playback_ended)

        self._capture.stop()
        logger.info("Turn-taking controller stopped")

    # ------------------------------------------------------------------
    # Listening
    # ------------------------------------------------------------------

    def on_final_transcript(self, text: str = "", **_) -> bool:
        """Accept or drop a finalized transcript.

        Returns:
            True if a new turn was started.
        """
        text = (text or "").strip()

        with self._lock:
            if self._state is not ControllerState.LISTENING:
                logger.debug("Turn in flight (%s), dropping transcript: %r", self._state.value, text)
                return False
            if not text:
                return False
            if self._last_spoken and text.lower() == self._last_spoken.lower():
                logger.warning("Ignoring own reply picked up by the microphone: %r", text)
                return False

            turn = ConversationTurn(spoken_text=text)
            self._turn = turn
            self._restart_policy.reset()
            self._set_state(ControllerState.AWAITING_LANGUAGE_DETECTION)

        self._bus.emit(Events.TURN_STARTED, turn=turn)
        self._runner(self._run_turn, turn)
        return True

    # ------------------------------------------------------------------
    # Remote calls (turn worker)
    # ------------------------------------------------------------------

    def _run_turn(self, turn: ConversationTurn):
        try:
            language = self._language_detector.detect_language(turn.spoken_text)
        except Exception as e:
            logger.warning("Language detection failed, using '%s': %s", self._default_language, e)
            language = None
        language = language or self._default_language

        with self._lock:
            if self._turn is not turn:
                return
            turn.detected_language = language
            logger.info("Detected language: %s", language)
            self._set_state(ControllerState.AWAITING_REPLY)

        try:
            reply = self._responder.get_reply(turn.spoken_text)
        except Exception as e:
            logger.error("Error processing AI response: %s", e)
            self._abandon(turn, e)
            return

        with self._lock:
            if self._turn is not turn:
                return
            turn.reply = reply
            self._last_reply = reply
            logger.info("AI response: %s", reply)

        try:
            self._playback.speak(reply, language)
        except Exception as e:
            logger.error("Playback raised, treating as finished: %s", e)
            self.on_playback_ended(success=False)

    def _abandon(self, turn: ConversationTurn, error):
        with self._lock:
            if self._turn is not turn:
                return
            self._turn = None
            turn.finished_at = time.time()
            self._set_state(ControllerState.LISTENING)
        self._bus.emit(Events.TURN_FAILED, turn=turn, error=error)

    # ------------------------------------------------------------------
    # Playback lifecycle
    # ------------------------------------------------------------------

    def on_playback_started(self, **_):
        """Playback began: suspend capture for its duration."""
        with self._lock:
            if not self._awaiting_playback():
                logger.debug("Playback start outside a turn (%s), ignored", self._state.value)
                return
            # Only audio that actually played can echo back
            self._last_spoken = self._turn.reply
            self._set_state(ControllerState.SPEAKING)

        logger.info("Stopping speech recognition while AI is speaking")
        self._capture.abort()

    def on_playback_ended(self, **_):
        """Playback finished (or failed): start the cooldown before resuming."""
        with self._lock:
            if not self._running:
                return
            if self._state is not ControllerState.SPEAKING and not self._awaiting_playback():
                return
            self._set_state(ControllerState.COOLDOWN_BEFORE_RESUME)
            self._resume_timer = self._schedule(self._cooldown_seconds, self._resume_listening)

        logger.info("AI speech finished, resuming recognition in %.1fs", self._cooldown_seconds)

    def _awaiting_playback(self) -> bool:
        return (
            self._state is ControllerState.AWAITING_REPLY
            and self._turn is not None
            and self._turn.reply is not None
        )

    def _resume_listening(self):
        with self._lock:
            self._resume_timer = None
            if not self._running or self._state is not ControllerState.COOLDOWN_BEFORE_RESUME:
                return
            turn = self._turn
            self._turn = None
            if turn is not None:
                turn.finished_at = time.time()
            self._set_state(ControllerState.LISTENING)
            error = self._start_capture()

        if turn is not None:
            self._bus.emit(Events.TURN_COMPLETED, turn=turn)
        if error is not None:
            self.on_capture_error(error=error)

    # ------------------------------------------------------------------
    # Capture error recovery
    # ------------------------------------------------------------------

    def on_capture_error(self, error=None, **_):
        """Schedule a capture restart; the controller state is left alone."""
        logger.warning("Speech recognition error: %s", error)
        with self._lock:
            if not self._running or self._restart_timer is not None:
                return
            delay = self._restart_policy.next_delay()
            if delay is None:
                logger.error(
                    "Speech capture failed %d times in a row, giving up",
                    self._restart_policy.attempts,
                )
                return
            self._restart_timer = self._schedule(delay, self._restart_capture)

        logger.info("Restarting speech recognition in %.1fs", delay)

    def _restart_capture(self):
        with self._lock:
            self._restart_timer = None
            if not self._running:
                return
            if self._state.capture_suspended:
                # Resume after playback restarts capture instead
                logger.debug("Capture restart skipped while %s", self._state.value)
                return
            logger.info("Restarting speech recognition after error")
            error = self._start_capture()

        if error is not None:
            self.on_capture_error(error=error)

    def _start_capture(self):
        """Open capture under the lock; returns the exception if it raised.

        Playback may begin while the microphone is opening (on this thread
        through a re-entrant event, or on another one before the lock was
        taken). Capture is aborted again if that happened.
        """
        try:
            self._capture.start()
        except Exception as e:
            logger.error("Could not start speech capture: %s", e)
            return e
        if self._state.capture_suspended:
            logger.debug("Playback began while capture was starting, aborting")
            self._capture.abort()
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, new_state: ControllerState):
        previous = self._state
        if previous is new_state:
            return
        self._state = new_state
        logger.debug("Controller: %s -> %s", previous.value, new_state.value)
        self._bus.emit(Events.CONTROLLER_STATE_CHANGED, previous=previous, current=new_state)

    def _schedule(self, delay: float, fn):
        timer = self._timer_factory(delay, fn)
        timer.daemon = True
        timer.start()
        return timer

    def _cancel_timers(self):
        for timer in (self._resume_timer, self._restart_timer):
            if timer is not None:
                timer.cancel()
        self._resume_timer = None
        self._restart_timer = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> ControllerState:
        with self._lock:
            return self._state

    @property
    def current_turn(self):
        with self._lock:
            return self._turn

    @property
    def is_busy(self) -> bool:
        return self.state.turn_in_flight

    @property
    def last_spoken(self) -> str:
        with self._lock:
            return self._last_spoken

    @property
    def last_reply(self) -> str:
        with self._lock:
            return self._last_reply

    @property
    def is_running(self) -> bool:
        return self._running
