from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass(frozen=True)
class Settings:
    db_path: Path = Path("./workout.db")
    user_id: str = "local"
    routine_path: Optional[Path] = None
    mic_device: Optional[int] = None      # None = system default input
    capture_rate: int = 48000
    stt_model: str = "base"
    tts_voice: Optional[str] = None  # None = first available of PREFERRED_VOICES
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000


def _int(env: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env
    routine = (env.get("WORKOUT_ROUTINE") or "").strip()
    return Settings(
        db_path=Path(env.get("WORKOUT_DB_PATH") or "./workout.db"),
        user_id=env.get("WORKOUT_USER_ID") or "local",
        routine_path=Path(routine) if routine else None,
        mic_device=_int(env, "WORKOUT_MIC_DEVICE", None),
        capture_rate=_int(env, "WORKOUT_CAPTURE_RATE", 48000),
        stt_model=env.get("WORKOUT_STT_MODEL") or "base",
        tts_voice=(env.get("WORKOUT_TTS_VOICE") or "").strip() or None,
        log_level=(env.get("WORKOUT_LOG_LEVEL") or "INFO").upper(),
        host=env.get("WORKOUT_HOST") or "127.0.0.1",
        port=_int(env, "WORKOUT_PORT", 8000),
    )
