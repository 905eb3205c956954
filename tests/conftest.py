from __future__ import annotations
from typing import Callable, List, Optional

import pytest

from repcoach.common.events import ExerciseRecord
from repcoach.runtime.assembly import WorkoutRuntime
from repcoach.workout.adapter import CommandBus
from repcoach.workout.routine import ExerciseSpec, RoutineDefinition


class FakeSpeechEngine:
    def __init__(self, auto_finish: bool = True):
        self.auto_finish = auto_finish
        self.spoken: List[str] = []
        self.cancels = 0
        self._pending: List[tuple] = []

    def speak(self, text, on_start=None, on_end=None, on_error=None):
        self.spoken.append(text)
        if on_start:
            on_start()
        if self.auto_finish:
            if on_end:
                on_end()
        else:
            self._pending.append((on_end, on_error))

    def finish(self):
        on_end, _ = self._pending.pop(0)
        if on_end:
            on_end()

    def fail(self, error="synthesis-failed"):
        _, on_error = self._pending.pop(0)
        if on_error:
            on_error(error)

    def cancel(self):
        self.cancels += 1


class FakeTones:
    def __init__(self):
        self.beeps: List[tuple] = []
        self.stops = 0

    def beep(self, frequency_hz, duration_ms):
        self.beeps.append((frequency_hz, duration_ms))

    def stop(self):
        self.stops += 1


class FakeListener:
    def __init__(self, fail_start: Optional[Exception] = None):
        self.fail_start = fail_start
        self.starts = 0
        self.stops = 0
        self.active = False
        self.callbacks = None

    def start(self, on_phrase, on_end, on_error):
        if self.fail_start is not None:
            raise self.fail_start
        self.starts += 1
        self.active = True
        self.callbacks = (on_phrase, on_end, on_error)

    def stop(self):
        self.stops += 1
        self.active = False

    def say(self, text):
        self.callbacks[0](text)

    def end(self):
        self.active = False
        self.callbacks[1]()

    def error(self, kind):
        self.active = False
        self.callbacks[2](kind)


class FakeClock:
    """Stands in for CountdownClock; tests fire ticks by hand."""
    def __init__(self):
        self.epoch = 0
        self.running = False
        self.starts = 0
        self._on_tick: Optional[Callable[[int], None]] = None

    def start(self, on_tick):
        if self.running:
            self.epoch += 1
        self.epoch += 1
        self.starts += 1
        self.running = True
        self._on_tick = on_tick
        return self.epoch

    def stop(self):
        if self.running:
            self.running = False
            self.epoch += 1

    def fire(self):
        assert self.running, "clock is stopped"
        self._on_tick(self.epoch)


class FakeScheduler:
    def __init__(self):
        self.calls: List[list] = []

    def __call__(self, delay, fn):
        entry = [delay, fn, False]
        self.calls.append(entry)
        return _Handle(entry)

    @property
    def pending(self):
        return [c for c in self.calls if not c[2]]

    def run_all(self):
        for entry in self.pending:
            entry[2] = True
            entry[1]()


class _Handle:
    def __init__(self, entry):
        self.entry = entry

    def cancel(self):
        self.entry[2] = True


class FakeStore:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.saved: List[ExerciseRecord] = []

    def save(self, record):
        if self.fail:
            raise OSError("disk full")
        self.saved.append(record)
        return str(len(self.saved))

    def list(self):
        return list(self.saved)

    def delete(self, record_id):
        return False


def make_routine(*specs: tuple) -> RoutineDefinition:
    return RoutineDefinition(
        name="Test Routine",
        exercises=tuple(
            ExerciseSpec(name=n, sets=s, reps=r, rest_between_reps=rr, rest_between_sets=rs)
            for n, s, r, rr, rs in specs
        ),
    )


class Harness:
    """WorkoutRuntime on fakes with a hand-driven bus."""
    def __init__(self, routine: RoutineDefinition, store=None, listener=None, auto_finish=True):
        self.speech = FakeSpeechEngine(auto_finish=auto_finish)
        self.tones = FakeTones()
        self.listener = listener if listener is not None else FakeListener()
        self.store = store if store is not None else FakeStore()
        self.clock = FakeClock()
        self.scheduler = FakeScheduler()
        self.bus = CommandBus()
        self.rt = WorkoutRuntime(
            routine,
            speech_engine=self.speech,
            tones=self.tones,
            listener=self.listener,
            store=self.store,
            clock=self.clock,
            bus=self.bus,
            call_later=self.scheduler,
        )
        self.events: List[dict] = []
        self.rt.set_event_sink(self.events.append)

    @property
    def ctl(self):
        return self.rt.controller

    @property
    def state(self):
        return self.rt.controller.state

    def do(self, name: str):
        fut = self.rt.command(name)
        self.bus.run_pending()
        return fut.result(timeout=0)

    def tick(self, n: int = 1):
        for _ in range(n):
            self.clock.fire()
            self.bus.run_pending()

    def run_timers(self):
        self.scheduler.run_all()
        self.bus.run_pending()

    def to_working(self):
        assert self.do("start")
        self.tick(10)


@pytest.fixture
def single_exercise():
    return make_routine(("Band Squats", 1, 2, 30, 120))


@pytest.fixture
def two_exercises():
    return make_routine(("Band Squats", 2, 2, 5, 15), ("Band Rows", 1, 1, 5, 15))


@pytest.fixture
def harness(single_exercise):
    return Harness(single_exercise)
