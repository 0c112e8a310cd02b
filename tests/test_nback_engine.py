from __future__ import annotations

import numpy as np
import pytest

from looplace.config import NBackConfig
from looplace.nback import (
    LETTER_POOL,
    AdvanceKind,
    NBackEngine,
    ResponseKind,
    generate_sequence,
    target_quota,
)
from looplace.timing import ManualClock
from looplace.types import EngineState, NBackOutcomeKind, Phase, RunMode, TimerKind
from looplace.validate import ConfigValidationError


def _config(**overrides: float) -> NBackConfig:
    params = {
        "total_trials": 4,
        "practice_trials": 4,
        "target_ratio": 0.5,
        "stimulus_ms": 300,
        "interstimulus_interval_ms": 200,
        "lead_in_ms": 10,
        "response_window_ms": 500,
        "seed": 9,
    }
    params.update(overrides)
    return NBackConfig(**params)  # type: ignore[arg-type]


def test_generated_targets_match_letters_two_back() -> None:
    master = np.random.default_rng(2024)
    for _ in range(10_000):
        length = int(master.integers(4, 201))
        ratio = float(master.random())
        rng = np.random.default_rng(int(master.integers(0, 2**62)))
        trials = generate_sequence(length, ratio, rng)

        assert len(trials) == length
        for t in trials[2:]:
            assert t.is_target == (t.letter == trials[t.index - 2].letter)
        assert sum(t.is_target for t in trials) == target_quota(length, ratio)


def test_sequence_letters_and_flags() -> None:
    trials = generate_sequence(60, 0.3, np.random.default_rng(1))
    assert all(t.letter in LETTER_POOL for t in trials)
    assert [t.index for t in trials] == list(range(60))
    assert not trials[0].is_target and not trials[1].is_target
    assert not trials[0].is_lure
    for t in trials[1:]:
        assert t.is_lure == (t.letter == trials[t.index - 1].letter)


@pytest.mark.parametrize(
    ("length", "ratio", "expected"),
    [
        (60, 0.3, 17),  # 58 * 0.3 = 17.4
        (4, 0.5, 1),
        (7, 0.5, 3),  # 2.5 rounds away from zero
        (4, 0.01, 1),  # forced minimum of one target
        (4, 0.0, 0),
        (10, 1.0, 8),
        (2, 0.5, 0),
        (1, 0.5, 0),
    ],
)
def test_target_quota_rounding(length: int, ratio: float, expected: int) -> None:
    assert target_quota(length, ratio) == expected


def test_sequences_are_reproducible_per_seed_mode_and_run() -> None:
    a = NBackEngine(_config(total_trials=40, seed=3))
    b = NBackEngine(_config(total_trials=40, seed=3))
    a.start(RunMode.MAIN)
    b.start(RunMode.MAIN)
    assert [t.letter for t in a.trials] == [t.letter for t in b.trials]

    assert a.seed_for(RunMode.MAIN, 1) != a.seed_for(RunMode.PRACTICE, 1)
    assert a.seed_for(RunMode.MAIN, 1) != a.seed_for(RunMode.MAIN, 2)


def test_start_schedules_lead_in_then_isi() -> None:
    clock = ManualClock()
    engine = NBackEngine(_config(), clock=clock)

    schedule = engine.start(RunMode.PRACTICE)
    assert schedule is not None
    assert schedule.stimulus.wait_ms == 10
    assert schedule.stimulus.kind is TimerKind.STIMULUS
    assert schedule.advance.wait_ms == 500
    assert schedule.advance.kind is TimerKind.ADVANCE
    assert engine.state == EngineState.waiting(0, RunMode.PRACTICE)
    assert engine.start(RunMode.MAIN) is None

    engine.mark_stimulus_on(0, clock.now())
    outcome = engine.advance(0)
    assert outcome.kind is AdvanceKind.NEXT
    assert outcome.schedule is not None
    assert outcome.schedule.stimulus.wait_ms == 200
    assert outcome.schedule.stimulus.trial_index == 1


def test_run_completion_without_responses() -> None:
    clock = ManualClock()
    engine = NBackEngine(_config(), clock=clock)
    engine.start(RunMode.PRACTICE)

    for idx in range(3):
        assert engine.mark_stimulus_on(idx, clock.now())
        assert engine.advance(idx).kind is AdvanceKind.NEXT
    engine.mark_stimulus_on(3, clock.now())
    done = engine.advance(3)
    assert done.kind is AdvanceKind.COMPLETED
    assert done.mode is RunMode.PRACTICE
    assert engine.state == EngineState.completed(RunMode.PRACTICE)

    metrics = engine.practice_metrics()
    assert metrics is not None
    assert metrics.total_trials == 4
    assert engine.main_metrics() is None
    for t in engine.trials:
        expected = NBackOutcomeKind.MISS if t.is_target else NBackOutcomeKind.CORRECT_REJECTION
        assert t.outcome.kind is expected


def test_response_classifies_hit_or_false_alarm() -> None:
    clock = ManualClock()
    engine = NBackEngine(_config(total_trials=30, target_ratio=0.4), clock=clock)
    engine.start(RunMode.MAIN)

    kinds: list[ResponseKind] = []
    for t in engine.trials:
        clock.advance(200.0)
        engine.mark_stimulus_on(t.index, clock.now())
        clock.advance(321.0)
        outcome = engine.register_response(clock.now())
        assert outcome.kind is not None
        kinds.append(outcome.kind)
        # Only the first press per trial counts.
        assert engine.register_response(clock.now()).ignored
        engine.advance(t.index)

    for t, kind in zip(engine.trials, kinds):
        if t.is_target:
            assert kind is ResponseKind.HIT
            assert t.outcome.kind is NBackOutcomeKind.HIT
        else:
            assert kind is ResponseKind.FALSE_ALARM
            assert t.outcome.kind is NBackOutcomeKind.FALSE_ALARM
        assert t.outcome.rt_ms == pytest.approx(321.0)
        assert t.response is not None and t.response.rt_ms == pytest.approx(321.0)

    metrics = engine.main_metrics()
    assert metrics is not None
    assert metrics.response_count == 30


def test_response_outside_stimulus_window_is_ignored() -> None:
    clock = ManualClock()
    engine = NBackEngine(_config(), clock=clock)
    assert engine.register_response(clock.now()).ignored
    engine.start(RunMode.MAIN)
    assert engine.register_response(clock.now()).ignored
    assert engine.trials[0].response is None


def test_advance_and_stimulus_for_wrong_trial_are_ignored() -> None:
    clock = ManualClock()
    engine = NBackEngine(_config(), clock=clock)
    engine.start(RunMode.MAIN)

    assert not engine.mark_stimulus_on(1, clock.now())
    assert engine.advance(1).ignored
    assert engine.mark_stimulus_on(0, clock.now())
    assert not engine.mark_stimulus_on(0, clock.now())
    assert engine.state == EngineState.stimulus_active(0, RunMode.MAIN)


def test_stale_run_events_are_ignored_after_abort_and_restart() -> None:
    clock = ManualClock()
    engine = NBackEngine(_config(), clock=clock)
    old = engine.start(RunMode.MAIN)
    assert old is not None
    engine.abort()
    assert engine.state.phase is Phase.ABORTED

    new = engine.start(RunMode.MAIN)
    assert new is not None
    before = engine.snapshot()

    assert not engine.mark_stimulus_on(0, clock.now(), run_id=old.stimulus.run_id)
    assert engine.advance(0, run_id=old.advance.run_id).ignored
    assert engine.register_response(clock.now(), run_id=old.stimulus.run_id).ignored
    assert engine.snapshot() == before

    assert engine.mark_stimulus_on(0, clock.now(), run_id=new.stimulus.run_id)


def test_abort_keeps_previous_metrics_slots() -> None:
    clock = ManualClock()
    engine = NBackEngine(_config(), clock=clock)
    engine.start(RunMode.MAIN)
    for idx in range(4):
        engine.mark_stimulus_on(idx, clock.now())
        engine.advance(idx)
    first = engine.main_metrics()

    engine.start(RunMode.MAIN)
    clock.set(99.0)
    engine.abort()
    assert engine.run_finished_at == 99.0
    assert engine.main_metrics() == first


def test_invalid_config_raises() -> None:
    with pytest.raises(ConfigValidationError, match="target_ratio"):
        NBackEngine(_config(target_ratio=1.5))
    with pytest.raises(ConfigValidationError, match="response_window_ms"):
        NBackEngine(_config(response_window_ms=0))


def test_response_pinned_to_other_trial_is_ignored() -> None:
    clock = ManualClock()
    engine = NBackEngine(_config(), clock=clock)
    engine.start(RunMode.MAIN)
    engine.mark_stimulus_on(0, clock.now())
    engine.advance(0)
    engine.mark_stimulus_on(1, clock.now())

    clock.advance(100.0)
    assert engine.register_response(clock.now(), trial_index=0).ignored
    assert engine.trials[1].response is None
    assert not engine.register_response(clock.now(), trial_index=1).ignored
