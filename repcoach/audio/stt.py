from __future__ import annotations
import logging
import os
import threading
import time
from typing import Callable, Optional

import numpy as np

logger = logging.getLogger(__name__)

# Cloud fallback (OpenAI Whisper)
_OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")


def rms(x: np.ndarray) -> float:
    x = x.astype(np.float32) / 32768.0
    return float(np.sqrt(np.mean(x**2) + 1e-12))


class VADRecorder:
    """
    Records audio until silence using WebRTC VAD.
    Captures at capture_rate (e.g., 48000) and resamples to 16000 for VAD/Whisper.
    Produces 16kHz mono int16 PCM suitable for Whisper/VAD.
    """
    def __init__(
        self,
        sample_rate: int = 16000,          # VAD/Whisper rate (keep 16000)
        frame_ms: int = 30,
        aggressiveness: int = 2,
        max_len_s: float = 4.0,            # "done" is short
        listen_timeout_s: float = 6.0,     # bail if no speech in this time
        device_index: Optional[int] = None,
        capture_rate: int = 48000,
    ):
        import webrtcvad  # lazy import

        self.vad_rate = sample_rate
        self.capture_rate = capture_rate
        self.frame_ms = frame_ms
        self.vad_frame_len = int(self.vad_rate * frame_ms / 1000)        # samples per 30ms @16k
        self.cap_frame_len = int(self.capture_rate * frame_ms / 1000)    # samples per 30ms @48k
        self.vad = webrtcvad.Vad(aggressiveness)
        self.max_len_samples = int(self.vad_rate * max_len_s)            # cap in 16k samples
        self.listen_timeout_s = listen_timeout_s
        self.device_index = device_index

    # 48k -> 16k is a plain decimation; anything else uses linear interp
    def _to_16k(self, pcm16_cap: np.ndarray) -> np.ndarray:
        if self.capture_rate == self.vad_rate:
            return pcm16_cap
        if self.capture_rate == 48000 and self.vad_rate == 16000:
            return pcm16_cap[::3]
        src = pcm16_cap.astype(np.float32)
        new_len = int(round(len(src) * (self.vad_rate / self.capture_rate)))
        if new_len <= 1:
            return np.zeros((0,), dtype=np.int16)
        x = np.linspace(0, len(src) - 1, num=len(src), dtype=np.float32)
        xi = np.linspace(0, len(src) - 1, num=new_len, dtype=np.float32)
        yi = np.interp(xi, x, src)
        yi = np.clip(yi, -32768, 32767).astype(np.int16)
        return yi

    def record_once(self, should_stop: Callable[[], bool] = lambda: False) -> np.ndarray:
        import sounddevice as sd  # lazy: needs PortAudio at import time

        buffer_16k: list[np.ndarray] = []
        resample_fifo = np.zeros((0,), dtype=np.int16)
        total_16k = 0
        voiced_timeout = 0.8
        last_voice_time: Optional[float] = None

        def callback(indata, frames, time_info, status):
            nonlocal last_voice_time, resample_fifo, total_16k
            pcm16_cap = np.asarray(indata).reshape(-1).astype(np.int16)
            chunk_16k = self._to_16k(pcm16_cap)
            if chunk_16k.size == 0:
                return
            resample_fifo = np.concatenate([resample_fifo, chunk_16k], axis=0)

            # slice out exact 30ms VAD frames from fifo
            while len(resample_fifo) >= self.vad_frame_len:
                frame = resample_fifo[:self.vad_frame_len]
                resample_fifo = resample_fifo[self.vad_frame_len:]
                try:
                    is_speech = self.vad.is_speech(frame.tobytes(), self.vad_rate)
                except Exception:
                    is_speech = False
                buffer_16k.append(frame)
                total_16k += len(frame)
                if is_speech:
                    last_voice_time = time.time()

        with sd.InputStream(
            samplerate=self.capture_rate,
            channels=1,
            dtype="int16",
            callback=callback,
            device=self.device_index,
            blocksize=self.cap_frame_len,
        ):
            start = time.time()
            while not should_stop():
                sd.sleep(50)
                now = time.time()
                if last_voice_time is None and (now - start) > self.listen_timeout_s:
                    break
                # had speech, then enough silence
                if last_voice_time is not None and (now - last_voice_time) > voiced_timeout:
                    break
                if total_16k >= self.max_len_samples:
                    break

        if not buffer_16k or last_voice_time is None:
            return np.zeros((0,), dtype=np.int16)
        return np.concatenate(buffer_16k, axis=0)


class STTEngine:
    def __init__(self, model_size: str = "base", device: str = "auto"):
        from faster_whisper import WhisperModel  # lazy import

        self.model_size = model_size
        self.device = device
        try:
            self._whisper_local = WhisperModel(model_size, device=device, compute_type="int8")
        except Exception as e:
            # model download / device init failed; transcribe() falls back to the API
            logger.warning("faster-whisper unavailable (%s)", e)
            self._whisper_local = None

    def transcribe(self, wav_pcm16: np.ndarray, sample_rate: int = 16000) -> str:
        """Try local faster-whisper; fall back to OpenAI Whisper if key set."""
        if wav_pcm16 is None or len(wav_pcm16) == 0:
            return ""
        if self._whisper_local is not None:
            try:
                segments, _ = self._whisper_local.transcribe(wav_pcm16.astype(np.float32) / 32768.0, language="en")
                return " ".join(s.text.strip() for s in segments).strip()
            except Exception as e:
                logger.warning("local transcription failed: %s", e)
        if _OPENAI_API_KEY:
            return self._transcribe_cloud(wav_pcm16, sample_rate)
        return ""

    def _transcribe_cloud(self, wav_pcm16: np.ndarray, sample_rate: int) -> str:
        import io
        import wave
        from openai import OpenAI

        buf = io.BytesIO()
        with wave.open(buf, "wb") as wf:
            wf.setnchannels(1)
            wf.setsampwidth(2)  # 16-bit
            wf.setframerate(sample_rate)
            wf.writeframes(wav_pcm16.tobytes())
        buf.name = "utterance.wav"
        buf.seek(0)
        try:
            res = OpenAI().audio.transcriptions.create(model="whisper-1", file=buf)
        except Exception as e:
            logger.warning("cloud transcription failed: %s", e)
            return ""
        return (res.text or "").strip()


class MicListener:
    """
    Speech input collaborator over the local microphone. Keeps capturing and
    reporting phrases until stop(), so it never ends on its own and on_end is
    not used. A silent capture or an empty transcript ends
    the run with the transient "no-speech" error; capture failures end it with
    "audio-capture".
    """
    def __init__(self, recorder: VADRecorder, engine: STTEngine, silence_rms: float = 0.005):
        self.recorder = recorder
        self.engine = engine
        self.silence_rms = silence_rms
        self._halt: Optional[threading.Event] = None

    @property
    def running(self) -> bool:
        return self._halt is not None and not self._halt.is_set()

    def start(self, on_phrase: Callable[[str], None], on_end: Callable[[], None], on_error: Callable[[str], None]):
        self.stop()
        halt = threading.Event()
        self._halt = halt
        threading.Thread(target=self._run, args=(halt, on_phrase, on_end, on_error), daemon=True).start()

    def stop(self):
        if self._halt is not None:
            self._halt.set()
            self._halt = None

    def _run(self, halt: threading.Event, on_phrase, on_end, on_error):
        try:
            while not halt.is_set():
                audio = self.recorder.record_once(should_stop=halt.is_set)
                if halt.is_set():
                    return
                if audio.size == 0 or rms(audio) < self.silence_rms:
                    on_error("no-speech")
                    return
                text = self.engine.transcribe(audio)
                if halt.is_set():
                    return
                if not text:
                    on_error("no-speech")
                    return
                on_phrase(text.strip().lower())
        except Exception as e:
            logger.error("microphone capture failed: %s", e)
            if not halt.is_set():
                on_error("audio-capture")
