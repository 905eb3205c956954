from __future__ import annotations
import logging
from concurrent.futures import Future
from typing import Any, Callable, Optional

from repcoach.common.config import Settings
from repcoach.common.events import ExerciseRecord
from repcoach.workout.adapter import CommandBus, SpeechGate, VoiceCommandAdapter, thread_timer
from repcoach.workout.clock import CountdownClock
from repcoach.workout.routine import DEFAULT_ROUTINE, RoutineDefinition, load_routine
from repcoach.workout.session import SessionController

logger = logging.getLogger(__name__)


class WorkoutRuntime:
    """
    One workout session with its collaborators. Every command, tick and
    collaborator event is applied through `bus`, and the event sink gets a
    state snapshot after each one.
    """
    def __init__(
        self,
        routine: RoutineDefinition,
        speech_engine,
        tones,
        listener=None,
        store=None,
        clock: Optional[CountdownClock] = None,
        bus: Optional[CommandBus] = None,
        call_later: Callable[[float, Callable[[], None]], Any] = thread_timer,
    ):
        self.bus = bus or CommandBus()
        self.store = store
        self.speech_engine = speech_engine
        self.speech = SpeechGate(speech_engine, dispatch=self.bus.submit)
        self.controller = SessionController(
            routine,
            speech=self.speech,
            tones=tones,
            store=store,
            clock=clock or CountdownClock(),
            dispatch=self._apply,
        )
        self.adapter = VoiceCommandAdapter(self.controller, listener, self._apply, call_later=call_later)
        self._event_sink: Optional[Callable[[dict], None]] = None

    def set_event_sink(self, sink: Optional[Callable[[dict], None]]):
        self._event_sink = sink

    # --- commands (presentation layer entry points)

    def start(self) -> Future:
        return self._apply(self.controller.start)

    def pause(self) -> Future:
        return self._apply(self.controller.pause)

    def resume(self) -> Future:
        return self._apply(self.controller.resume)

    def reset(self) -> Future:
        return self._apply(self.controller.reset)

    def rep_done(self) -> Future:
        return self._apply(self.controller.rep_done)

    def command(self, name: str) -> Future:
        handler = {
            "start": self.start,
            "pause": self.pause,
            "resume": self.resume,
            "reset": self.reset,
            "rep": self.rep_done,
        }.get(name)
        if handler is None:
            raise KeyError(name)
        return handler()

    # --- history

    def history(self) -> list[ExerciseRecord]:
        if self.store is None:
            return []
        return self.store.list()

    def delete_record(self, record_id: str) -> bool:
        if self.store is None:
            return False
        try:
            return self.store.delete(record_id)
        except Exception as e:
            logger.error("Error deleting exercise %s: %s", record_id, e)
            return False

    # --- read side

    def snapshot(self) -> dict:
        ctl = self.controller
        st = ctl.state
        ex = ctl.current_exercise
        return {
            "routine": ctl.routine.name,
            "phase": st.phase.value,
            "paused_from": ctl.paused_from.value if ctl.paused_from else None,
            "exercise_index": st.exercise_index,
            "exercise_count": len(ctl.routine),
            "exercise": ex.name,
            "set_number": st.set_number,
            "sets": ex.sets,
            "rep_number": st.rep_number,
            "reps": ex.reps,
            "timer_seconds": st.timer_seconds,
            "status_message": st.status_message,
            "storage_note": st.storage_note,
            "speaking": self.speech.speaking,
            "listening": self.adapter.listening,
            "voice_available": self.adapter.voice_available,
            "voice_note": self.adapter.voice_note,
        }

    # --- lifecycle

    def run_in_background(self):
        self.bus.start()

    def shutdown(self):
        self.controller.clock.stop()
        self.speech.cancel()
        self.bus.shutdown()
        for part in (self.adapter.listener, self.speech_engine):
            stop = getattr(part, "stop", None) or getattr(part, "shutdown", None)
            if stop is None:
                continue
            try:
                stop()
            except Exception as e:
                logger.warning("shutdown of %s failed: %s", type(part).__name__, e)

    def emit(self, event: dict):
        if self._event_sink is None:
            return
        try:
            self._event_sink(event)
        except Exception:
            logger.exception("event sink failed")

    def _apply(self, fn: Callable[..., Any], *args: Any) -> Future:
        return self.bus.submit(self._run_and_publish, fn, args)

    def _run_and_publish(self, fn: Callable[..., Any], args: tuple) -> Any:
        result = fn(*args)
        self.emit({"type": "state", **self.snapshot()})
        return result


def resolve_routine(settings: Settings) -> RoutineDefinition:
    if settings.routine_path is None:
        return DEFAULT_ROUTINE
    return load_routine(settings.routine_path)


def build_local_runtime(settings: Settings, listener=None) -> WorkoutRuntime:
    """Runtime on this machine's speakers; the mic listener unless another one is given."""
    from repcoach.audio.stt import MicListener, STTEngine, VADRecorder
    from repcoach.audio.tones import ToneGenerator
    from repcoach.audio.tts import TTSEngine
    from repcoach.data.db import ExerciseStore

    if listener is None:
        try:
            listener = MicListener(
                VADRecorder(device_index=settings.mic_device, capture_rate=settings.capture_rate),
                STTEngine(model_size=settings.stt_model),
            )
        except Exception as e:
            # runtime stays usable through the manual rep control
            logger.warning("Speech recognition not supported here: %s", e)
            listener = None
    return WorkoutRuntime(
        resolve_routine(settings),
        speech_engine=TTSEngine(voice=settings.tts_voice),
        tones=ToneGenerator(device=None),
        listener=listener,
        store=ExerciseStore(settings.db_path, user_id=settings.user_id),
    )
