from __future__ import annotations
import logging
import queue
import re
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional

from repcoach.common.events import Phase
from repcoach.workout.session import SessionController

logger = logging.getLogger(__name__)

RESTART_DELAY_S = 0.5
# entering Working from these phases waits before listening so the spoken cue isn't captured
LISTEN_DELAYS: Dict[Phase, float] = {Phase.RESTING_BETWEEN_SETS: 2.0}
TRANSIENT_ERRORS = frozenset({"no-speech"})
UNAVAILABLE_NOTE = "Listening unavailable. Use the Done Rep control."

_DONE = re.compile(r"\bdone\b", re.IGNORECASE)


def is_done_phrase(text: str) -> bool:
    return bool(text) and _DONE.search(text) is not None


def thread_timer(delay: float, fn: Callable[[], None]):
    t = threading.Timer(delay, fn)
    t.daemon = True
    t.start()
    return t


class CommandBus:
    """
    Single application point for commands, ticks and collaborator events.

    submit() only enqueues. Items are applied one at a time, each to completion,
    either by the worker thread (start()) or by run_pending() when driving the
    bus by hand.
    """
    def __init__(self):
        self.q: "queue.Queue[tuple]" = queue.Queue()
        self._stop = threading.Event()
        self.worker: Optional[threading.Thread] = None

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        fut: Future = Future()
        self.q.put((fn, args, fut))
        return fut

    def run_pending(self) -> int:
        """Apply everything queued so far, including items queued while applying. Returns the count."""
        n = 0
        while True:
            try:
                item = self.q.get_nowait()
            except queue.Empty:
                return n
            self._apply(item)
            n += 1

    def start(self):
        if self.worker is not None and self.worker.is_alive():
            return
        self._stop.clear()
        self.worker = threading.Thread(target=self._run, daemon=True)
        self.worker.start()

    def shutdown(self, timeout: float = 1.0):
        self._stop.set()
        if self.worker is not None:
            self.worker.join(timeout=timeout)
            self.worker = None

    def _run(self):
        while not self._stop.is_set():
            try:
                item = self.q.get(timeout=0.1)
            except queue.Empty:
                continue
            self._apply(item)

    def _apply(self, item: tuple):
        fn, args, fut = item
        try:
            fut.set_result(fn(*args))
        except Exception as e:
            logger.exception("command %s failed", getattr(fn, "__name__", fn))
            fut.set_exception(e)
        finally:
            self.q.task_done()


class SpeechGate:
    """
    At most one active utterance. A say() while the previous one is still in
    progress is dropped, not queued. End/error callbacks from the engine are
    routed through `dispatch` so they're applied in order with everything else.
    """
    def __init__(self, engine, dispatch: Callable[..., Any] = lambda fn, *a: fn(*a)):
        self.engine = engine
        self.dispatch = dispatch
        self.speaking = False
        self._utterance = 0

    def say(self, text: str) -> bool:
        if not text:
            return False
        if self.speaking:
            logger.info("Speech in progress, dropping: %r", text)
            return False
        self._utterance += 1
        uid = self._utterance
        self.speaking = True
        try:
            self.engine.speak(
                text,
                on_end=lambda: self.dispatch(self._finished, uid),
                on_error=lambda err: self.dispatch(self._failed, uid, err),
            )
        except Exception as e:
            logger.error("Speech output error: %s", e)
            self.speaking = False
            return False
        return True

    def cancel(self):
        # callbacks of the cancelled utterance no longer match _utterance
        self._utterance += 1
        self.speaking = False
        try:
            self.engine.cancel()
        except Exception as e:
            logger.error("Speech cancel failed: %s", e)

    def _finished(self, uid: int):
        if uid == self._utterance:
            self.speaking = False

    def _failed(self, uid: int, err: Any):
        logger.error("Speech Synthesis Error: %s", err)
        self._finished(uid)


class VoiceCommandAdapter:
    """
    Turns recognized phrases into rep_done commands and owns the speech-input
    lifecycle: listening while the session is Working, stopped otherwise,
    restarted after transient "no-speech" errors, and disabled for the rest
    of the session after any other error.

    Listener contract: start(on_phrase, on_end, on_error), stop(). on_end means
    the listener ended on its own; after on_error the listener is already down.
    """
    def __init__(
        self,
        controller: SessionController,
        listener,
        submit: Callable[..., Any],
        call_later: Callable[[float, Callable[[], None]], Any] = thread_timer,
    ):
        self.controller = controller
        self.listener = listener
        self.submit = submit
        self.call_later = call_later
        self.listening = False
        self.voice_available = listener is not None
        self.voice_note: Optional[str] = None if listener is not None else UNAVAILABLE_NOTE
        self._listen_gen = 0
        self._pending_token = 0
        self._pending_handle = None
        controller.add_phase_observer(self._on_phase)

    # --- phase lifecycle

    def _on_phase(self, old: Phase, new: Phase):
        self._cancel_pending()
        if new is Phase.IDLE:
            self._stop_listening()
            # a new session gets another chance at voice input
            if self.listener is not None:
                self.voice_available = True
                self.voice_note = None
            return
        if new is not Phase.WORKING:
            self._stop_listening()
            return
        delay = LISTEN_DELAYS.get(old, 0.0)
        if delay > 0:
            self._schedule(delay, self._start_if_working)
        else:
            self._start_listening()

    # --- listener events (always applied on the bus)

    def handle_phrase(self, text: str, gen: Optional[int] = None) -> bool:
        if gen is not None and gen != self._listen_gen:
            return False
        logger.info("Recognized: %r", text)
        if self.controller.phase is not Phase.WORKING or not is_done_phrase(text):
            return False
        return self.controller.rep_done()

    def handle_end(self, gen: Optional[int] = None):
        if gen is not None and gen != self._listen_gen:
            return
        self.listening = False
        if self._should_listen():
            self._start_listening()

    def handle_error(self, error: str, gen: Optional[int] = None):
        if gen is not None and gen != self._listen_gen:
            return
        self.listening = False
        if error in TRANSIENT_ERRORS:
            if self._should_listen():
                logger.info("No speech detected, restarting recognition.")
                self._schedule(RESTART_DELAY_S, self._start_if_working)
            return
        logger.error("Speech recognition error: %s", error)
        self._disable_voice()

    # --- internals

    def _should_listen(self) -> bool:
        return self.voice_available and self.controller.phase is Phase.WORKING

    def _start_if_working(self, token: int):
        if token != self._pending_token:
            return
        self._pending_handle = None
        if self._should_listen():
            self._start_listening()

    def _start_listening(self):
        if not self.voice_available or self.listening:
            return
        self._listen_gen += 1
        gen = self._listen_gen
        try:
            self.listener.start(
                on_phrase=lambda text: self.submit(self.handle_phrase, text, gen),
                on_end=lambda: self.submit(self.handle_end, gen),
                on_error=lambda err: self.submit(self.handle_error, err, gen),
            )
        except Exception as e:
            logger.error("Failed to start speech recognition: %s", e)
            self._disable_voice()
            return
        self.listening = True

    def _stop_listening(self):
        self._cancel_pending()
        was_listening = self.listening
        self.listening = False
        self._listen_gen += 1
        if was_listening and self.listener is not None:
            try:
                self.listener.stop()
            except Exception as e:
                logger.error("Failed to stop speech recognition: %s", e)

    def _disable_voice(self):
        self._stop_listening()
        self.voice_available = False
        self.voice_note = UNAVAILABLE_NOTE

    def _schedule(self, delay: float, fn: Callable[[int], None]):
        self._cancel_pending()
        token = self._pending_token
        self._pending_handle = self.call_later(delay, lambda: self.submit(fn, token))

    def _cancel_pending(self):
        # bumping the token also voids a timer that already fired and is waiting on the bus
        self._pending_token += 1
        handle, self._pending_handle = self._pending_handle, None
        if handle is not None and hasattr(handle, "cancel"):
            handle.cancel()
