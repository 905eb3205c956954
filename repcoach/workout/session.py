from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from repcoach.common.events import (
    ACTIVE_PHASES,
    COUNTDOWN_PHASES,
    Beep,
    ExerciseRecord,
    Phase,
    Speak,
)
from repcoach.workout.clock import CountdownClock
from repcoach.workout.cues import cues_for
from repcoach.workout.routine import ExerciseSpec, RoutineDefinition

logger = logging.getLogger(__name__)

WARMUP_SECONDS = 10
EXERCISE_REST_SECONDS = 120

READY_MESSAGE = "Tap Start to begin your workout."
RESET_MESSAGE = "Workout reset. Ready when you are!"

PhaseObserver = Callable[[Phase, Phase], None]


@dataclass
class SessionState:
    exercise_index: int = 0
    set_number: int = 1
    rep_number: int = 0
    timer_seconds: int = 0
    phase: Phase = Phase.IDLE
    status_message: str = READY_MESSAGE
    storage_note: Optional[str] = None


def describe_rest(seconds: int) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        return f"{seconds // 60} minute"
    return f"{seconds} second"


def _inline(fn: Callable[..., Any], *args: Any) -> Any:
    return fn(*args)


class SessionController:
    """
    Owns the SessionState and the countdown clock of one workout.

    Every public method is a command. Commands that the current phase has no
    transition for return False and change nothing. The controller is not
    thread-safe by itself: the runtime applies commands and ticks one at a time
    through the command bus, and `dispatch` is how clock ticks get onto that bus.
    """
    def __init__(
        self,
        routine: RoutineDefinition,
        speech,
        tones,
        store=None,
        clock: Optional[CountdownClock] = None,
        dispatch: Callable[..., Any] = _inline,
    ):
        self.routine = routine
        self.speech = speech
        self.tones = tones
        self.store = store
        self.clock = clock or CountdownClock()
        self.dispatch = dispatch
        self.state = SessionState()
        self._paused_from: Optional[Phase] = None
        self._recorded: set[int] = set()
        self._observers: List[PhaseObserver] = []

    # --- read side

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def current_exercise(self) -> ExerciseSpec:
        return self.routine[min(self.state.exercise_index, len(self.routine) - 1)]

    @property
    def paused_from(self) -> Optional[Phase]:
        return self._paused_from

    def add_phase_observer(self, observer: PhaseObserver):
        self._observers.append(observer)

    # --- commands

    def start(self) -> bool:
        if self.state.phase is not Phase.IDLE:
            return False
        self.state = SessionState(status_message="Starting workout in 10 seconds...")
        self._recorded.clear()
        self._say("Workout starting. Get ready in 10 seconds.")
        self._begin_countdown(Phase.WARMUP, WARMUP_SECONDS)
        return True

    def rep_done(self) -> bool:
        st = self.state
        if st.phase is not Phase.WORKING:
            return False
        ex = self.current_exercise
        reps_done = st.rep_number + 1

        if reps_done < ex.reps:
            st.rep_number = reps_done
            st.status_message = f"Rep {reps_done} done. Rest for {ex.rest_between_reps} seconds."
            self._say("Rest.")
            self._begin_countdown(Phase.RESTING_BETWEEN_REPS, ex.rest_between_reps)
        elif st.set_number < ex.sets:
            st.rep_number = 0
            rest = describe_rest(ex.rest_between_sets)
            st.status_message = f"Great work! Set {st.set_number} is complete. Rest for {rest}."
            self._say(f"Set {st.set_number} is complete. Take a {rest} rest.")
            self._begin_countdown(Phase.RESTING_BETWEEN_SETS, ex.rest_between_sets)
        else:
            st.rep_number = reps_done
            self._complete_exercise()
        return True

    def pause(self) -> bool:
        if self.state.phase not in ACTIVE_PHASES:
            return False
        # clock, speech and tones are down before the phase flips; the adapter stops
        # the listener from the phase observer within the same command
        self.clock.stop()
        self._silence()
        self._paused_from = self.state.phase
        self.state.status_message = "Workout paused."
        self._enter(Phase.PAUSED)
        return True

    def resume(self) -> bool:
        if self.state.phase is not Phase.PAUSED or self._paused_from is None:
            return False
        previous, self._paused_from = self._paused_from, None
        self.state.status_message = "Workout resumed."
        self._enter(previous)
        if previous in COUNTDOWN_PHASES:
            self._start_clock()
        self._say("Workout resumed. Let's get back to it.")
        return True

    def reset(self) -> bool:
        self.clock.stop()
        self._silence()
        old = self.state.phase
        self.state = SessionState(status_message=RESET_MESSAGE)
        self._paused_from = None
        self._recorded.clear()
        self._enter(Phase.IDLE, previous=old, force=True)
        return True

    def tick(self, epoch: Optional[int] = None) -> bool:
        """Apply one second of countdown. Ticks from a stopped or restarted clock are dropped."""
        if epoch is not None and epoch != self.clock.epoch:
            return False
        st = self.state
        if st.phase not in COUNTDOWN_PHASES:
            return False
        if st.timer_seconds > 0:
            st.timer_seconds -= 1
        self._emit_cues()
        if st.timer_seconds == 0:
            self._countdown_finished()
        return True

    # --- transitions

    def _begin_countdown(self, phase: Phase, seconds: int):
        self.state.timer_seconds = max(0, seconds)
        self._enter(phase)
        if self.state.timer_seconds == 0:
            self.clock.stop()
            self._countdown_finished()
            return
        self._start_clock()
        self._emit_cues()

    def _countdown_finished(self):
        st = self.state
        phase = st.phase
        self.clock.stop()

        if phase is Phase.WARMUP:
            ex = self.current_exercise
            st.set_number = 1
            st.rep_number = 0
            st.status_message = f"Set 1 of {ex.sets}. Perform {ex.reps} reps of {ex.name}."
            self._say(f"Let's begin! First exercise is {ex.name}.")
        elif phase is Phase.RESTING_BETWEEN_REPS:
            ex = self.current_exercise
            st.status_message = f"Rest complete. Rep {st.rep_number + 1} of {ex.reps} of {ex.name}."
            self._say("Rest complete. Next rep.")
        elif phase is Phase.RESTING_BETWEEN_SETS:
            ex = self.current_exercise
            st.set_number += 1
            st.rep_number = 0
            st.status_message = (
                f"Rest complete. Set {st.set_number} of {ex.sets}. Perform {ex.reps} reps of {ex.name}."
            )
            self._say(f"Rest complete. Starting set {st.set_number}. Perform {ex.reps} reps of {ex.name}.")
        elif phase is Phase.RESTING_BETWEEN_EXERCISES:
            st.exercise_index += 1
            st.set_number = 1
            st.rep_number = 0
            ex = self.current_exercise
            st.status_message = f"Set 1 of {ex.sets}. Perform {ex.reps} reps of {ex.name}."
            self._say(f"Next exercise: {ex.name}. Perform {ex.reps} reps.")
        else:
            return
        st.timer_seconds = 0
        self._enter(Phase.WORKING)

    def _complete_exercise(self):
        st = self.state
        index = st.exercise_index
        ex = self.routine[index]
        if index not in self._recorded:
            self._recorded.add(index)
            self._persist(ExerciseRecord(name=ex.name, sets=ex.sets, reps=ex.reps, completed_at=time.time()))

        if index + 1 < len(self.routine):
            nxt = self.routine[index + 1]
            st.status_message = (
                f"You've completed {ex.name}. Take a 2-minute break before your next exercise, {nxt.name}."
            )
            self._say(
                f"You've completed {ex.name}. Take a two-minute break to recover before the next exercise: {nxt.name}."
            )
            self._begin_countdown(Phase.RESTING_BETWEEN_EXERCISES, EXERCISE_REST_SECONDS)
        else:
            self.clock.stop()
            st.timer_seconds = 0
            st.status_message = "Workout complete!"
            self._enter(Phase.COMPLETE)
            self._say("Congratulations! Workout complete.")

    def _enter(self, phase: Phase, previous: Optional[Phase] = None, force: bool = False):
        old = self.state.phase if previous is None else previous
        self.state.phase = phase
        if old is phase and not force:
            return
        logger.debug("phase %s -> %s", old.value, phase.value)
        for observer in list(self._observers):
            try:
                observer(old, phase)
            except Exception:
                logger.exception("phase observer failed (%s -> %s)", old.value, phase.value)

    # --- collaborators

    def _start_clock(self):
        self.clock.start(self._on_clock)

    def _on_clock(self, epoch: int):
        self.dispatch(self.tick, epoch)

    def _emit_cues(self):
        st = self.state
        for effect in cues_for(st.phase, st.timer_seconds, st.exercise_index, st.set_number):
            if isinstance(effect, Speak):
                self._say(effect.text)
            elif isinstance(effect, Beep):
                self._beep(effect)

    def _say(self, text: str):
        try:
            self.speech.say(text)
        except Exception:
            logger.exception("speech output failed for %r", text)

    def _silence(self):
        self.speech.cancel()
        stop = getattr(self.tones, "stop", None)
        if stop is None:
            return
        try:
            stop()
        except Exception:
            logger.exception("tone generator failed to stop")

    def _beep(self, beep: Beep):
        try:
            self.tones.beep(beep.frequency_hz, beep.duration_ms)
        except Exception:
            logger.exception("tone generator failed")

    def _persist(self, record: ExerciseRecord):
        if self.store is None:
            return
        try:
            self.store.save(record)
            self.state.storage_note = None
        except Exception as e:
            logger.error("Error saving exercise %s: %s", record.name, e)
            self.state.storage_note = f"Could not save {record.name}; progress continues."
