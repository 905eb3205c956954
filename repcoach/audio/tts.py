from __future__ import annotations
import logging
import os
import queue
import re
import subprocess
import threading
from typing import Any, Callable, Iterable, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

Callback = Optional[Callable[..., None]]

# first match wins; names are matched case-insensitively as substrings
PREFERRED_VOICES = ("Google UK English Male", "Google US English Male", "Alex", "Daniel")

_SAY_VOICE_LINE = re.compile(r"^(.+?)\s+[a-z]{2,3}[_-]\w+\s+#")


def pick_voice(available: Iterable[Tuple[str, str]], preferred: Sequence[str] = PREFERRED_VOICES) -> Optional[str]:
    """Return the id of the first (id, name) pair matching a preferred name, or None."""
    voices = list(available)
    for want in preferred:
        want = want.lower()
        for voice_id, name in voices:
            if want in (name or "").lower():
                return voice_id
    return None


def parse_say_voices(listing: str) -> list:
    """(name, name) pairs from `say -v ?` output."""
    out = []
    for line in listing.splitlines():
        m = _SAY_VOICE_LINE.match(line.strip())
        if m:
            name = m.group(1).strip()
            out.append((name, name))
    return out


class TTSEngine:
    """
    Speech output collaborator. Utterances are spoken one at a time on a worker
    thread; on_start/on_end/on_error fire from that thread.
    """
    def __init__(self, prefer_mac_say: bool = True, voice: Optional[str] = None):
        self.prefer_mac_say = prefer_mac_say and (os.uname().sysname == "Darwin")
        self.preferred_voices: Tuple[str, ...] = (voice,) if voice else PREFERRED_VOICES
        self._mac_voice: Optional[str] = None
        self._mac_voice_resolved = False
        self.q: "queue.Queue[tuple]" = queue.Queue()
        self._stop = threading.Event()
        self._pyttsx3 = None
        self._proc: Optional[subprocess.Popen] = None
        self._speaking = False
        self._lock = threading.Lock()
        self.worker = threading.Thread(target=self._run, daemon=True)
        self.worker.start()

    def speak(self, text: str, on_start: Callback = None, on_end: Callback = None, on_error: Callback = None):
        if not text:
            return
        self.q.put((text, on_start, on_end, on_error))

    def is_speaking(self) -> bool:
        return bool(self._speaking or not self.q.empty())

    def cancel(self):
        """Drop queued utterances and cut the current one short. on_end still fires for it."""
        while True:
            try:
                self.q.get_nowait()
            except queue.Empty:
                break
            self.q.task_done()
        with self._lock:
            proc = self._proc
        if proc is not None and proc.poll() is None:
            proc.terminate()
        if self._pyttsx3 is not None:
            try:
                self._pyttsx3.stop()
            except RuntimeError as e:
                logger.debug("pyttsx3 stop: %s", e)

    def wait_until_idle(self, timeout: float | None = None):
        """Block until all queued speech is done (best-effort)."""
        if timeout is None:
            self.q.join()
            return
        import time
        t0 = time.time()
        while self.is_speaking() and (time.time() - t0) < timeout:
            time.sleep(0.05)

    def _ensure_pyttsx3(self):
        if self._pyttsx3 is None:
            import pyttsx3  # lazy import
            engine = pyttsx3.init()
            voices = [(v.id, v.name) for v in (engine.getProperty("voices") or [])]
            voice_id = pick_voice(voices, self.preferred_voices)
            if voice_id is None:
                logger.warning("none of %s installed; using the default voice", list(self.preferred_voices))
            else:
                engine.setProperty("voice", voice_id)
            self._pyttsx3 = engine

    def _resolve_mac_voice(self) -> Optional[str]:
        if not self._mac_voice_resolved:
            self._mac_voice_resolved = True
            try:
                listing = subprocess.run(["say", "-v", "?"], capture_output=True, text=True, check=True).stdout
            except (OSError, subprocess.CalledProcessError) as e:
                logger.warning("could not list say voices: %s", e)
                listing = ""
            self._mac_voice = pick_voice(parse_say_voices(listing), self.preferred_voices)
            if self._mac_voice is None:
                logger.warning("none of %s installed; using the default voice", list(self.preferred_voices))
        return self._mac_voice

    def _speak_mac(self, text: str):
        voice = self._resolve_mac_voice()
        cmd = ["say", "-v", voice, text] if voice else ["say", text]
        proc = subprocess.Popen(cmd)
        with self._lock:
            self._proc = proc
        try:
            proc.wait()
        finally:
            with self._lock:
                self._proc = None

    def _speak_fallback(self, text: str):
        self._ensure_pyttsx3()
        self._pyttsx3.say(text)
        self._pyttsx3.runAndWait()

    def _run(self):
        while not self._stop.is_set():
            try:
                text, on_start, on_end, on_error = self.q.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._speaking = True
                _fire(on_start)
                if self.prefer_mac_say:
                    self._speak_mac(text)
                else:
                    self._speak_fallback(text)
            except Exception as e:
                logger.error("TTS failed for %r: %s", text, e)
                self._speaking = False
                _fire(on_error, str(e))
            else:
                self._speaking = False
                _fire(on_end)
            finally:
                self.q.task_done()

    def shutdown(self):
        self.cancel()
        self._stop.set()


def _fire(cb: Callback, *args: Any):
    if cb is None:
        return
    try:
        cb(*args)
    except Exception:
        logger.exception("TTS callback failed")
