from __future__ import annotations
import json
from pathlib import Path
from typing import Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class ExerciseSpec(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1, description="Exercise name as spoken and displayed")
    sets: int = Field(..., gt=0)
    reps: int = Field(..., gt=0)
    rest_between_reps: int = Field(30, ge=0, alias="restBetweenReps", description="Seconds")
    rest_between_sets: int = Field(120, ge=0, alias="restBetweenSets", description="Seconds")


class RoutineDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "Custom Routine"
    exercises: Tuple[ExerciseSpec, ...] = Field(..., min_length=1)

    def __len__(self) -> int:
        return len(self.exercises)

    def __getitem__(self, index: int) -> ExerciseSpec:
        return self.exercises[index]


def _band(name: str) -> ExerciseSpec:
    return ExerciseSpec(name=name, sets=4, reps=12, rest_between_reps=30, rest_between_sets=120)


DEFAULT_ROUTINE = RoutineDefinition(
    name="The Full-Body Assault",
    exercises=(
        _band("Band Squats"),
        _band("Band Rows"),
        _band("Band Push-ups"),
        _band("Band Bicep Curls"),
        _band("Band Pull-downs"),
    ),
)


def load_routine(path: Union[str, Path]) -> RoutineDefinition:
    """Read a routine from JSON: either {"name", "exercises"} or a bare list of exercises."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, list):
        raw = {"name": Path(path).stem.replace("_", " ").title(), "exercises": raw}
    return RoutineDefinition.model_validate(raw)
