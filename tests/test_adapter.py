from __future__ import annotations
import threading

import pytest

from repcoach.common.events import Phase
from repcoach.workout.adapter import (
    RESTART_DELAY_S,
    UNAVAILABLE_NOTE,
    CommandBus,
    SpeechGate,
    is_done_phrase,
)

from conftest import FakeListener, FakeSpeechEngine, Harness


@pytest.mark.parametrize("text,expected", [
    ("done", True),
    ("okay done", True),
    ("Done!", True),
    ("i'm done with that one", True),
    ("undone", False),
    ("donut", False),
    ("", False),
])
def test_done_phrase_matching(text, expected):
    assert is_done_phrase(text) is expected


def test_listening_starts_when_working(harness):
    harness.do("start")
    assert harness.listener.starts == 0
    harness.tick(10)
    assert harness.listener.active
    assert harness.rt.adapter.listening


def test_done_phrase_advances_rep(harness):
    harness.to_working()
    harness.listener.say("okay done")
    harness.bus.run_pending()
    assert harness.state.rep_number == 1
    assert harness.state.phase is Phase.RESTING_BETWEEN_REPS
    # listening is off while resting
    assert not harness.listener.active


def test_other_phrases_are_ignored(harness):
    harness.to_working()
    harness.listener.say("how many left")
    harness.bus.run_pending()
    assert harness.state.rep_number == 0
    assert harness.state.phase is Phase.WORKING


def test_done_during_set_rest_is_ignored(two_exercises):
    h = Harness(two_exercises)
    h.to_working()
    h.do("rep")
    h.tick(5)
    say_done = h.listener.callbacks[0]
    h.do("rep")
    assert h.state.phase is Phase.RESTING_BETWEEN_SETS

    # a late result from the stopped recognizer
    say_done("done")
    h.bus.run_pending()
    # and one that reaches the adapter directly
    fut = h.bus.submit(h.rt.adapter.handle_phrase, "done")
    h.bus.run_pending()
    assert fut.result() is False
    assert h.state.rep_number == 0
    assert h.state.set_number == 1
    assert h.state.phase is Phase.RESTING_BETWEEN_SETS


def test_listening_after_set_rest_is_delayed(two_exercises):
    h = Harness(two_exercises)
    h.to_working()
    h.do("rep")
    h.tick(5)
    h.do("rep")
    starts = h.listener.starts
    h.tick(15)
    assert h.state.phase is Phase.WORKING
    assert h.listener.starts == starts
    assert [c[0] for c in h.scheduler.pending] == [2.0]
    h.run_timers()
    assert h.listener.starts == starts + 1


def test_rep_rest_end_listens_immediately(harness):
    harness.to_working()
    harness.do("rep")
    starts = harness.listener.starts
    harness.tick(30)
    assert harness.listener.starts == starts + 1
    assert harness.scheduler.pending == []


def test_no_speech_restarts_after_delay(harness):
    harness.to_working()
    harness.listener.error("no-speech")
    harness.bus.run_pending()
    assert not harness.rt.adapter.listening
    assert [c[0] for c in harness.scheduler.pending] == [RESTART_DELAY_S]
    assert harness.rt.adapter.voice_note is None

    harness.run_timers()
    assert harness.listener.starts == 2
    assert harness.rt.adapter.listening


def test_no_speech_restart_cancelled_by_pause(harness):
    harness.to_working()
    harness.listener.error("no-speech")
    harness.bus.run_pending()
    harness.do("pause")
    harness.run_timers()
    assert harness.listener.starts == 1
    assert not harness.rt.adapter.listening


def test_restart_timer_firing_after_reset_does_nothing(harness):
    harness.to_working()
    harness.listener.error("no-speech")
    harness.bus.run_pending()
    _, fire, _ = harness.scheduler.pending[0]
    harness.do("reset")
    fire()  # the timer thread lost the race with cancel()
    harness.bus.run_pending()
    assert harness.state.phase is Phase.IDLE
    assert harness.listener.starts == 1


def test_stale_restart_does_not_double_start(harness):
    harness.to_working()
    harness.listener.error("no-speech")
    harness.bus.run_pending()
    _, fire, _ = harness.scheduler.pending[0]
    harness.do("pause")
    harness.do("resume")
    assert harness.listener.starts == 2
    fire()
    harness.bus.run_pending()
    assert harness.listener.starts == 2


def test_listener_ending_on_its_own_is_restarted(harness):
    harness.to_working()
    harness.listener.end()
    harness.bus.run_pending()
    assert harness.listener.starts == 2
    assert harness.listener.active


def test_fatal_error_disables_voice_but_not_session(harness):
    h = harness
    h.to_working()
    h.listener.error("not-allowed")
    h.bus.run_pending()
    assert h.rt.adapter.voice_available is False
    assert h.rt.adapter.voice_note == UNAVAILABLE_NOTE
    assert h.scheduler.pending == []

    # manual control still drives the session
    h.do("rep")
    h.tick(30)
    assert h.state.phase is Phase.WORKING
    assert h.listener.starts == 1
    h.do("rep")
    assert h.state.phase is Phase.COMPLETE


def test_reset_reenables_voice(harness):
    harness.to_working()
    harness.listener.error("audio-capture")
    harness.bus.run_pending()
    harness.do("reset")
    assert harness.rt.adapter.voice_available is True
    harness.to_working()
    assert harness.listener.starts == 2


def test_unsupported_listener_leaves_manual_control(single_exercise):
    h = Harness(single_exercise, listener=FakeListener(fail_start=RuntimeError("no recognizer")))
    h.to_working()
    assert h.rt.adapter.voice_available is False
    assert h.rt.snapshot()["voice_note"] == UNAVAILABLE_NOTE
    h.do("rep")
    assert h.state.rep_number == 1


def test_pause_stops_listener_and_resume_restarts_it(harness):
    harness.to_working()
    harness.do("pause")
    assert not harness.listener.active
    assert harness.listener.stops == 1
    harness.do("resume")
    assert harness.listener.active
    assert harness.listener.starts == 2


def test_complete_stops_listener(harness):
    harness.to_working()
    harness.do("rep")
    harness.tick(30)
    harness.do("rep")
    assert harness.state.phase is Phase.COMPLETE
    assert not harness.listener.active


def test_speak_while_speaking_is_dropped(single_exercise):
    h = Harness(single_exercise, auto_finish=False)
    h.do("start")
    assert h.rt.speech.speaking
    h.tick(10)
    # "Let's begin" arrives while "Workout starting" is still playing
    assert h.speech.spoken == ["Workout starting. Get ready in 10 seconds."]

    h.speech.finish()
    h.bus.run_pending()
    assert not h.rt.speech.speaking
    h.do("rep")
    assert h.speech.spoken[-1] == "Rest."


def test_speech_error_clears_speaking_flag():
    engine = FakeSpeechEngine(auto_finish=False)
    gate = SpeechGate(engine)
    assert gate.say("Rest.") is True
    assert gate.say("Again") is False
    engine.fail()
    assert gate.speaking is False
    assert gate.say("Again") is True


def test_end_of_cancelled_utterance_does_not_free_the_gate():
    engine = FakeSpeechEngine(auto_finish=False)
    gate = SpeechGate(engine)
    gate.say("first")
    gate.cancel()
    gate.say("second")
    engine.finish()  # late end for "first"
    assert gate.speaking is True
    engine.finish()
    assert gate.speaking is False


def test_speech_engine_raising_is_contained():
    class Broken:
        def speak(self, *a, **kw):
            raise RuntimeError("no audio device")

        def cancel(self):
            raise RuntimeError("no audio device")

    gate = SpeechGate(Broken())
    assert gate.say("hello") is False
    assert gate.speaking is False
    gate.cancel()


def test_bus_applies_items_in_order_on_worker():
    bus = CommandBus()
    seen = []
    bus.start()
    try:
        futures = [bus.submit(seen.append, i) for i in range(20)]
        for f in futures:
            f.result(timeout=2.0)
    finally:
        bus.shutdown()
    assert seen == list(range(20))


def test_bus_survives_a_failing_item():
    bus = CommandBus()

    def boom():
        raise ValueError("bad")

    bad = bus.submit(boom)
    good = bus.submit(lambda: "ok")
    assert bus.run_pending() == 2
    with pytest.raises(ValueError):
        bad.result(timeout=0)
    assert good.result(timeout=0) == "ok"


def test_bus_runs_items_queued_while_applying():
    bus = CommandBus()
    order = []

    def outer():
        order.append("outer")
        bus.submit(order.append, "inner")

    bus.submit(outer)
    bus.run_pending()
    assert order == ["outer", "inner"]


def test_live_bus_serializes_threads(harness):
    h = harness
    h.bus.start()
    try:
        h.rt.start().result(timeout=2.0)
        threads = [threading.Thread(target=h.clock.fire) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        h.bus.submit(lambda: None).result(timeout=2.0)
    finally:
        h.bus.shutdown()
    assert h.state.phase is Phase.WORKING
    assert h.state.timer_seconds == 0
