from __future__ import annotations

import pytest

from repcoach.common.events import Beep, Phase, RESTING_PHASES, Speak
from repcoach.workout.cues import LONG_BEEP, SHORT_BEEP, TEN_SECONDS_LEFT, cues_for


@pytest.mark.parametrize("t", range(1, 11))
def test_warmup_beeps_from_ten_to_one(t):
    assert cues_for(Phase.WARMUP, t) == [SHORT_BEEP]


@pytest.mark.parametrize("t", [0, 11, 30])
def test_warmup_silent_outside_window(t):
    assert cues_for(Phase.WARMUP, t) == []


@pytest.mark.parametrize("phase", sorted(RESTING_PHASES, key=lambda p: p.value))
def test_resting_sequence(phase):
    by_value = {t: cues_for(phase, t, 2, 3) for t in range(0, 31)}
    assert by_value[10] == [Speak(TEN_SECONDS_LEFT), Beep(440, 100)]
    for t in list(range(2, 10)) + [11, 12]:
        assert by_value[t] == [SHORT_BEEP]
    assert by_value[1] == [LONG_BEEP]
    assert by_value[0] == []
    for t in range(13, 31):
        assert by_value[t] == []
    spoken = [e for effects in by_value.values() for e in effects if isinstance(e, Speak)]
    assert spoken == [Speak(TEN_SECONDS_LEFT)]


@pytest.mark.parametrize("phase", [Phase.IDLE, Phase.WORKING, Phase.PAUSED, Phase.COMPLETE])
def test_no_cues_without_countdown(phase):
    for t in range(0, 15):
        assert cues_for(phase, t) == []


def test_cues_are_repeatable():
    assert cues_for(Phase.RESTING_BETWEEN_SETS, 10) == cues_for(Phase.RESTING_BETWEEN_SETS, 10)
    assert LONG_BEEP.duration_ms == 1000 and SHORT_BEEP.duration_ms == 100
