from __future__ import annotations
from typing import List

from repcoach.common.events import Beep, Effect, Phase, RESTING_PHASES, Speak

TEN_SECONDS_LEFT = "Ten seconds left. Get ready to go."

SHORT_BEEP = Beep(440, 100)
LONG_BEEP = Beep(440, 1000)


def cues_for(phase: Phase, timer_seconds: int, exercise_index: int = 0, set_number: int = 1) -> List[Effect]:
    """Effects to hand to the speech/tone collaborators for one countdown value.

    Pure: the same input always yields the same list, and nothing is mutated.
    """
    if phase is Phase.WARMUP:
        # the warmup only ever precedes the first set of the first exercise
        if exercise_index == 0 and set_number == 1 and 1 <= timer_seconds <= 10:
            return [SHORT_BEEP]
        return []

    if phase not in RESTING_PHASES:
        return []

    effects: List[Effect] = []
    if timer_seconds == 10:
        effects.append(Speak(TEN_SECONDS_LEFT))
    if 2 <= timer_seconds <= 12:
        effects.append(SHORT_BEEP)
    elif timer_seconds == 1:
        effects.append(LONG_BEEP)
    return effects
