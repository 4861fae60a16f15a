"""
Tests for the Turn-Taking Controller
====================================
All collaborators are fakes; turns run synchronously and timers fire by hand.
"""

import pytest
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.conversation import TurnTakingController
from core.events import EventBus, Events
from core.types import ControllerState
from modules.control.restart_policy import RestartPolicy

S = ControllerState


class FakeCapture:
    def __init__(self):
        self.calls = []
        self.active = False
        self.on_start = None     # one-shot hook run while the microphone opens
        self.start_error = None  # one-shot exception raised by start()

    def start(self):
        self.calls.append("start")
        if self.start_error is not None:
            error, self.start_error = self.start_error, None
            raise error
        if self.on_start is not None:
            hook, self.on_start = self.on_start, None
            hook()
        self.active = True
        return True

    def abort(self):
        self.calls.append("abort")
        self.active = False

    def stop(self):
        self.calls.append("stop")
        self.active = False


class FakeLanguageDetector:
    def __init__(self, language="en", error=None):
        self.language = language
        self.error = error
        self.calls = []

    def detect_language(self, text):
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.language


class FakeResponder:
    def __init__(self, reply="hi there", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def get_reply(self, text):
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.reply


class FakePlayback:
    """Publishes playback events the way SpeechPlaybackChannel does."""

    def __init__(self, bus, capture, finish=True, emit_started=True, error=None):
        self.bus = bus
        self.capture = capture
        self.finish = finish
        self.emit_started = emit_started
        self.error = error
        self.spoken = []
        self.capture_active_while_playing = []

    def speak(self, text, language_code=None):
        self.spoken.append((text, language_code))
        if self.error:
            raise self.error
        if self.emit_started:
            self.bus.emit(Events.PLAYBACK_STARTED, text=text, language=language_code)
            self.capture_active_while_playing.append(self.capture.active)
        if self.finish:
            self.bus.emit(Events.PLAYBACK_ENDED, text=text, language=language_code,
                          success=self.emit_started)
        return self.emit_started


class ManualTimer:
    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        assert self.started and not self.cancelled
        self.fn()


class TimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, delay, fn):
        timer = ManualTimer(delay, fn)
        self.timers.append(timer)
        return timer

    def fire_last(self):
        self.timers[-1].fire()


def run_now(target, *args):
    target(*args)


@pytest.fixture
def bus():
    bus = EventBus()
    bus.reset()
    yield bus
    bus.reset()


@pytest.fixture
def capture():
    return FakeCapture()


@pytest.fixture
def timers():
    return TimerFactory()


@pytest.fixture
def states(bus):
    seen = []
    bus.subscribe(Events.CONTROLLER_STATE_CHANGED, lambda previous, current: seen.append(current))
    return seen


def make_controller(bus, capture, timers, playback=None, detector=None, responder=None,
                    runner=run_now, **config):
    controller = TurnTakingController(
        capture=capture,
        language_detector=detector or FakeLanguageDetector(),
        responder=responder or FakeResponder(),
        playback=playback or FakePlayback(bus, capture),
        config=config,
        event_bus=bus,
        runner=runner,
        timer_factory=timers,
    )
    controller.start()
    return controller


class TestTurnLifecycle:
    """Test suite for a complete listen -> reply -> speak -> resume turn."""

    def test_starts_listening(self, bus, capture, timers):
        """Test start() subscribes and opens the microphone."""
        controller = make_controller(bus, capture, timers)

        assert controller.state is S.LISTENING
        assert controller.is_running
        assert capture.calls == ["start"]
        assert bus.listener_count(Events.TRANSCRIPT_FINAL) == 1

    def test_start_is_idempotent(self, bus, capture, timers):
        """Test a second start() does not double-subscribe."""
        controller = make_controller(bus, capture, timers)
        controller.start()

        assert bus.listener_count(Events.TRANSCRIPT_FINAL) == 1
        assert capture.calls == ["start"]

    def test_full_turn_state_sequence(self, bus, capture, timers, states):
        """Test 'hello' walks every state in order and returns to listening."""
        playback = FakePlayback(bus, capture)
        controller = make_controller(bus, capture, timers, playback=playback)

        bus.emit(Events.TRANSCRIPT_FINAL, text="hello")

        assert states == [
            S.AWAITING_LANGUAGE_DETECTION,
            S.AWAITING_REPLY,
            S.SPEAKING,
            S.COOLDOWN_BEFORE_RESUME,
        ]
        assert playback.spoken == [("hi there", "en")]
        assert timers.timers[-1].delay == pytest.approx(4.0)
        assert timers.timers[-1].daemon is True

        timers.fire_last()

        assert states[-1] is S.LISTENING
        assert controller.state is S.LISTENING
        assert capture.calls == ["start", "abort", "start"]

    def test_turn_record(self, bus, capture, timers):
        """Test the completed turn carries text, language and reply."""
        completed = []
        bus.subscribe(Events.TURN_COMPLETED, lambda turn: completed.append(turn))
        controller = make_controller(bus, capture, timers,
                                     detector=FakeLanguageDetector("fr"),
                                     responder=FakeResponder("bonjour"))

        controller.on_final_transcript(text="salut")
        assert controller.current_turn is not None
        timers.fire_last()

        assert len(completed) == 1
        turn = completed[0]
        assert turn.spoken_text == "salut"
        assert turn.detected_language == "fr"
        assert turn.reply == "bonjour"
        assert turn.finished_at is not None
        assert controller.current_turn is None
        assert controller.last_reply == "bonjour"

    def test_custom_cooldown(self, bus, capture, timers):
        """Test the resume delay comes from configuration."""
        make_controller(bus, capture, timers, cooldown_seconds=1.5)
        bus.emit(Events.TRANSCRIPT_FINAL, text="hello")

        assert timers.timers[-1].delay == pytest.approx(1.5)

    def test_capture_off_during_playback(self, bus, capture, timers):
        """Test the microphone is never active while speech is playing."""
        playback = FakePlayback(bus, capture)
        make_controller(bus, capture, timers, playback=playback)

        bus.emit(Events.TRANSCRIPT_FINAL, text="hello")
        assert playback.capture_active_while_playing == [False]
        assert capture.active is False

        timers.fire_last()
        assert capture.active is True

    def test_cooldown_timer_cancelled_on_shutdown(self, bus, capture, timers):
        """Test shutdown cancels a pending resume and stops capture."""
        controller = make_controller(bus, capture, timers)
        bus.emit(Events.TRANSCRIPT_FINAL, text="hello")

        controller.shutdown()

        assert timers.timers[-1].cancelled is True
        assert capture.calls[-1] == "stop"
        assert bus.listener_count(Events.TRANSCRIPT_FINAL) == 0
        assert not controller.is_running

    def test_start_after_shutdown_mid_turn(self, bus, capture, timers):
        """Test a controller stopped during playback listens again after start()."""
        playback = FakePlayback(bus, capture, finish=False)
        controller = make_controller(bus, capture, timers, playback=playback)
        controller.on_final_transcript(text="hello")
        assert controller.state is S.SPEAKING

        controller.shutdown()
        assert controller.state is S.LISTENING
        assert controller.current_turn is None

        controller.start()
        assert controller.on_final_transcript(text="again") is True


class TestTranscriptGating:
    """Test suite for dropping transcripts while a turn is in flight."""

    def test_dropped_while_speaking(self, bus, capture, timers):
        """Test a transcript during playback has no effect."""
        responder = FakeResponder()
        playback = FakePlayback(bus, capture, finish=False)
        controller = make_controller(bus, capture, timers, playback=playback, responder=responder)

        controller.on_final_transcript(text="hello")
        assert controller.state is S.SPEAKING

        assert controller.on_final_transcript(text="again") is False
        assert controller.state is S.SPEAKING
        assert responder.calls == ["hello"]

    def test_dropped_while_awaiting_detection(self, bus, capture, timers):
        """Test a second transcript while remote calls are pending is dropped."""
        deferred = []
        detector = FakeLanguageDetector()
        controller = make_controller(bus, capture, timers, detector=detector,
                                     runner=lambda target, *args: deferred.append((target, args)))

        assert controller.on_final_transcript(text="first") is True
        assert controller.is_busy
        assert controller.on_final_transcript(text="second") is False
        assert len(deferred) == 1

        target, args = deferred[0]
        target(*args)
        assert detector.calls == ["first"]

    def test_dropped_during_cooldown(self, bus, capture, timers):
        """Test transcripts are still refused before the resume fires."""
        controller = make_controller(bus, capture, timers)
        controller.on_final_transcript(text="hello")
        assert controller.state is S.COOLDOWN_BEFORE_RESUME

        assert controller.on_final_transcript(text="more") is False

    def test_empty_transcript_ignored(self, bus, capture, timers, states):
        """Test blank transcripts never start a turn."""
        controller = make_controller(bus, capture, timers)

        assert controller.on_final_transcript(text="   ") is False
        assert controller.on_final_transcript() is False
        assert states == []

    def test_echo_of_last_reply_ignored(self, bus, capture, timers):
        """Test the assistant's own words are not treated as user speech."""
        responder = FakeResponder("Hi there")
        controller = make_controller(bus, capture, timers, responder=responder)
        controller.on_final_transcript(text="hello")
        timers.fire_last()

        assert controller.last_spoken == "Hi there"
        assert controller.on_final_transcript(text="hi THERE") is False
        assert controller.state is S.LISTENING
        assert responder.calls == ["hello"]

    def test_next_turn_after_resume(self, bus, capture, timers):
        """Test a new transcript is accepted once listening again."""
        responder = FakeResponder()
        controller = make_controller(bus, capture, timers, responder=responder)
        controller.on_final_transcript(text="hello")
        timers.fire_last()

        assert controller.on_final_transcript(text="how are you") is True
        assert responder.calls == ["hello", "how are you"]


class TestTurnFailures:
    """Test suite for remote-call and playback failures."""

    def test_responder_failure_returns_to_listening(self, bus, capture, timers, states):
        """Test a failed reply abandons the turn without speaking."""
        failed = []
        bus.subscribe(Events.TURN_FAILED, lambda turn, error: failed.append((turn, error)))
        playback = FakePlayback(bus, capture)
        controller = make_controller(bus, capture, timers, playback=playback,
                                     responder=FakeResponder(error=RuntimeError("503")))

        controller.on_final_transcript(text="hello")

        assert states == [S.AWAITING_LANGUAGE_DETECTION, S.AWAITING_REPLY, S.LISTENING]
        assert playback.spoken == []
        assert controller.current_turn is None
        assert len(failed) == 1
        assert failed[0][0].spoken_text == "hello"
        assert capture.calls == ["start"]

    def test_responder_failure_keeps_last_reply(self, bus, capture, timers):
        """Test a failed turn leaves the previous reply on display."""
        responder = FakeResponder("first answer")
        controller = make_controller(bus, capture, timers, responder=responder)
        controller.on_final_transcript(text="hello")
        timers.fire_last()

        responder.error = RuntimeError("timeout")
        controller.on_final_transcript(text="again")

        assert controller.last_reply == "first answer"
        assert controller.state is S.LISTENING

    def test_language_failure_uses_default(self, bus, capture, timers):
        """Test the turn proceeds in the default language."""
        playback = FakePlayback(bus, capture)
        make_controller(bus, capture, timers, playback=playback, default_language="en",
                        detector=FakeLanguageDetector(error=RuntimeError("boom")))

        bus.emit(Events.TRANSCRIPT_FINAL, text="hello")

        assert playback.spoken == [("hi there", "en")]

    def test_empty_language_uses_default(self, bus, capture, timers):
        """Test an empty detection result falls back to the default."""
        playback = FakePlayback(bus, capture)
        make_controller(bus, capture, timers, playback=playback, default_language="de",
                        detector=FakeLanguageDetector(language=""))

        bus.emit(Events.TRANSCRIPT_FINAL, text="hallo")

        assert playback.spoken == [("hi there", "de")]

    def test_playback_failure_still_resumes(self, bus, capture, timers, states):
        """Test playback that ends without starting still cools down and resumes."""
        playback = FakePlayback(bus, capture, emit_started=False)
        controller = make_controller(bus, capture, timers, playback=playback)

        controller.on_final_transcript(text="hello")
        assert states[-1] is S.COOLDOWN_BEFORE_RESUME
        assert S.SPEAKING not in states

        timers.fire_last()
        assert controller.state is S.LISTENING

    def test_playback_exception_still_resumes(self, bus, capture, timers):
        """Test a raising playback channel does not wedge the controller."""
        playback = FakePlayback(bus, capture, error=OSError("no audio device"))
        controller = make_controller(bus, capture, timers, playback=playback)

        controller.on_final_transcript(text="hello")
        assert controller.state is S.COOLDOWN_BEFORE_RESUME

        timers.fire_last()
        assert controller.state is S.LISTENING

    def test_stray_playback_events_ignored(self, bus, capture, timers, states):
        """Test playback events outside a turn do not move the state."""
        controller = make_controller(bus, capture, timers)

        bus.emit(Events.PLAYBACK_STARTED, text="x", language="en")
        bus.emit(Events.PLAYBACK_ENDED, text="x", language="en", success=True)

        assert controller.state is S.LISTENING
        assert states == []
        assert timers.timers == []

    def test_unplayed_reply_is_not_an_echo(self, bus, capture, timers):
        """Test a reply that never played does not block the same words from the user."""
        playback = FakePlayback(bus, capture, emit_started=False)
        controller = make_controller(bus, capture, timers, playback=playback,
                                     responder=FakeResponder("hello again"))
        controller.on_final_transcript(text="hello")
        timers.fire_last()

        assert controller.last_reply == "hello again"
        assert controller.last_spoken == ""
        assert controller.on_final_transcript(text="Hello again") is True

    def test_resume_failure_returns_to_listening(self, bus, capture, timers):
        """Test a capture crash on resume still ends the turn and retries capture."""
        completed = []
        bus.subscribe(Events.TURN_COMPLETED, lambda turn: completed.append(turn))
        controller = make_controller(bus, capture, timers)
        controller.on_final_transcript(text="hello")
        capture.start_error = RuntimeError("audio backend crashed")

        timers.fire_last()

        assert controller.state is S.LISTENING
        assert len(completed) == 1
        assert timers.timers[-1].delay == pytest.approx(2.0)

        timers.fire_last()
        assert capture.active is True
        assert controller.on_final_transcript(text="how are you") is True


class TestCaptureRecovery:
    """Test suite for restarting capture after recognizer errors."""

    def test_playback_during_restart_keeps_capture_off(self, bus, capture, timers):
        """Test playback beginning while capture reopens leaves the microphone off."""
        playback = FakePlayback(bus, capture, finish=False)
        controller = make_controller(bus, capture, timers, playback=playback)
        bus.emit(Events.CAPTURE_ERROR, error="network")
        capture.on_start = lambda: controller.on_final_transcript(text="hello")

        timers.fire_last()

        assert controller.state is S.SPEAKING
        assert capture.active is False
        assert capture.calls == ["start", "start", "abort", "abort"]

    def test_playback_during_resume_keeps_capture_off(self, bus, capture, timers):
        """Test a turn reaching playback while capture resumes leaves the microphone off."""
        playback = FakePlayback(bus, capture)
        controller = make_controller(bus, capture, timers, playback=playback)
        controller.on_final_transcript(text="hello")
        playback.finish = False
        capture.on_start = lambda: controller.on_final_transcript(text="next question")

        timers.fire_last()

        assert controller.state is S.SPEAKING
        assert capture.active is False

    def test_restart_failure_schedules_another(self, bus, capture, timers):
        """Test a restart that raises goes back through the retry schedule."""
        make_controller(bus, capture, timers)
        bus.emit(Events.CAPTURE_ERROR, error="network")
        capture.start_error = RuntimeError("device busy")

        timers.fire_last()

        assert len(timers.timers) == 2
        assert capture.calls == ["start", "start"]

        timers.fire_last()
        assert capture.calls == ["start", "start", "start"]

    def test_error_schedules_restart(self, bus, capture, timers, states):
        """Test a capture error restarts capture after the delay."""
        controller = make_controller(bus, capture, timers)

        bus.emit(Events.CAPTURE_ERROR, error="network")

        assert timers.timers[-1].delay == pytest.approx(2.0)
        assert controller.state is S.LISTENING
        assert states == []

        timers.fire_last()
        assert capture.calls == ["start", "start"]

    def test_single_pending_restart(self, bus, capture, timers):
        """Test repeated errors before the restart fires share one timer."""
        make_controller(bus, capture, timers)

        bus.emit(Events.CAPTURE_ERROR, error="a")
        bus.emit(Events.CAPTURE_ERROR, error="b")

        assert len(timers.timers) == 1

    def test_restart_skipped_while_speaking(self, bus, capture, timers):
        """Test a restart due during playback leaves the microphone off."""
        playback = FakePlayback(bus, capture, finish=False)
        controller = make_controller(bus, capture, timers, playback=playback)
        bus.emit(Events.CAPTURE_ERROR, error="network")
        restart_timer = timers.timers[-1]

        controller.on_final_transcript(text="hello")
        assert controller.state is S.SPEAKING

        restart_timer.fire()
        assert capture.active is False
        assert capture.calls == ["start", "abort"]

    def test_restart_skipped_during_cooldown(self, bus, capture, timers):
        """Test only the resume timer reopens capture after playback."""
        controller = make_controller(bus, capture, timers)
        bus.emit(Events.CAPTURE_ERROR, error="network")
        restart_timer = timers.timers[0]

        controller.on_final_transcript(text="hello")
        restart_timer.fire()
        assert capture.calls == ["start", "abort"]

        timers.fire_last()
        assert capture.calls == ["start", "abort", "start"]

    def test_gives_up_after_max_retries(self, bus, capture, timers):
        """Test the circuit breaker stops scheduling restarts."""
        make_controller(bus, capture, timers, restart_max_retries=1)

        bus.emit(Events.CAPTURE_ERROR, error="a")
        timers.fire_last()
        bus.emit(Events.CAPTURE_ERROR, error="b")

        assert len(timers.timers) == 1

    def test_backoff_delays(self, bus, capture, timers):
        """Test consecutive failures grow the delay when backoff is set."""
        make_controller(bus, capture, timers, restart_backoff_multiplier=2.0,
                        restart_max_delay_seconds=5.0)

        for _ in range(3):
            bus.emit(Events.CAPTURE_ERROR, error="x")
            timers.fire_last()

        assert [t.delay for t in timers.timers] == [2.0, 4.0, 5.0]

    def test_accepted_turn_resets_failures(self, bus, capture, timers):
        """Test a successful transcript clears the failure count."""
        policy = RestartPolicy({"restart_max_retries": 2})
        controller = TurnTakingController(
            capture, FakeLanguageDetector(), FakeResponder(), FakePlayback(bus, capture),
            event_bus=bus, restart_policy=policy, runner=run_now, timer_factory=timers,
        )
        controller.start()
        bus.emit(Events.CAPTURE_ERROR, error="x")
        timers.fire_last()
        assert policy.attempts == 1

        controller.on_final_transcript(text="hello")
        assert policy.attempts == 0

    def test_no_restart_after_shutdown(self, bus, capture, timers):
        """Test errors after shutdown are ignored."""
        controller = make_controller(bus, capture, timers)
        controller.shutdown()

        controller.on_capture_error(error="late")

        assert timers.timers == []


class TestRestartPolicy:
    """Test suite for the restart delay schedule."""

    def test_fixed_delay_default(self):
        """Test the default schedule is a fixed two-second delay forever."""
        policy = RestartPolicy()
        delays = [policy.next_delay() for _ in range(10)]

        assert delays == [2.0] * 10
        assert not policy.exhausted

    def test_exhaustion_and_reset(self):
        """Test max_retries exhausts and reset re-arms."""
        policy = RestartPolicy({"restart_max_retries": 2, "restart_delay_seconds": 1})

        assert policy.next_delay() == 1.0
        assert policy.next_delay() == 1.0
        assert policy.next_delay() is None
        assert policy.exhausted

        policy.reset()
        assert policy.attempts == 0
        assert policy.next_delay() == 1.0

    def test_multiplier_below_one_is_fixed(self):
        """Test a shrinking multiplier is clamped to a fixed delay."""
        policy = RestartPolicy({"restart_backoff_multiplier": 0.5})

        assert [policy.next_delay() for _ in range(3)] == [2.0, 2.0, 2.0]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
