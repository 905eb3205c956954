from __future__ import annotations
import logging
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

SAMPLE_RATE = 44100


def render_beep(frequency_hz: float = 440, duration_ms: int = 100, sample_rate: int = SAMPLE_RATE,
                peak: float = 0.5) -> np.ndarray:
    """Sine wave with a 10 ms attack up to `peak`, then a linear release to silence."""
    n = max(1, int(sample_rate * duration_ms / 1000))
    t = np.arange(n, dtype=np.float32) / sample_rate
    wave = np.sin(2 * np.pi * frequency_hz * t).astype(np.float32)

    attack = min(n, max(1, int(sample_rate * 0.01)))
    env = np.empty(n, dtype=np.float32)
    env[:attack] = np.linspace(0.0, peak, attack, endpoint=False, dtype=np.float32)
    env[attack:] = np.linspace(peak, 0.0, n - attack, dtype=np.float32)
    return wave * env


class ToneGenerator:
    """Fire-and-forget beeps on the default output device."""
    def __init__(self, sample_rate: int = SAMPLE_RATE, device: Optional[int] = None):
        self.sample_rate = sample_rate
        self.device = device
        self._sd = None

    def _ensure_sd(self):
        if self._sd is None:
            import sounddevice as sd  # lazy: needs PortAudio at import time
            self._sd = sd
        return self._sd

    def beep(self, frequency_hz: float = 440, duration_ms: int = 100):
        samples = render_beep(frequency_hz, duration_ms, self.sample_rate)
        try:
            self._ensure_sd().play(samples, self.sample_rate, device=self.device, blocking=False)
        except Exception as e:
            logger.warning("beep failed: %s", e)

    def stop(self):
        """Cut off any beep still playing. No-op before the first beep."""
        if self._sd is None:
            return
        try:
            self._sd.stop()
        except Exception as e:
            logger.warning("stopping tones failed: %s", e)
