from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class Phase(str, Enum):
    IDLE = "idle"
    WARMUP = "warmup"
    WORKING = "working"
    RESTING_BETWEEN_REPS = "resting_between_reps"
    RESTING_BETWEEN_SETS = "resting_between_sets"
    RESTING_BETWEEN_EXERCISES = "resting_between_exercises"
    PAUSED = "paused"
    COMPLETE = "complete"


RESTING_PHASES = frozenset({
    Phase.RESTING_BETWEEN_REPS,
    Phase.RESTING_BETWEEN_SETS,
    Phase.RESTING_BETWEEN_EXERCISES,
})

# phases whose definition includes a running countdown
COUNTDOWN_PHASES = RESTING_PHASES | {Phase.WARMUP}

# phases that can be paused
ACTIVE_PHASES = COUNTDOWN_PHASES | {Phase.WORKING}


@dataclass(frozen=True)
class Speak:
    text: str


@dataclass(frozen=True)
class Beep:
    frequency_hz: int = 440
    duration_ms: int = 100


Effect = Union[Speak, Beep]


@dataclass(frozen=True)
class ExerciseRecord:
    name: str
    sets: int
    reps: int
    completed_at: float
    id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sets": self.sets,
            "reps": self.reps,
            "completed_at": self.completed_at,
        }
