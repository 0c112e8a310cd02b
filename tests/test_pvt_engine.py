from __future__ import annotations

import numpy as np
import pytest

from looplace.config import PvtConfig
from looplace.pvt import PvtEngine, StepKind
from looplace.timing import ManualClock
from looplace.types import EngineState, Phase, PvtOutcomeKind, TimerKind
from looplace.validate import ConfigValidationError


def _engine(**overrides: int) -> tuple[PvtEngine, ManualClock]:
    params = {
        "target_trials": 3,
        "min_iti_ms": 0,
        "max_iti_ms": 0,
        "max_response_ms": 500,
        "min_reaction_trials": 1,
    }
    params.update(overrides)
    clock = ManualClock()
    return PvtEngine(PvtConfig(**params), clock=clock), clock


def test_start_creates_first_trial_and_schedules_stimulus() -> None:
    engine, _clock = _engine(min_iti_ms=2000, max_iti_ms=4000)

    req = engine.start()
    assert req is not None
    assert req.run_id == 1
    assert req.trial_index == 0
    assert req.kind is TimerKind.STIMULUS
    assert 2000 <= req.wait_ms <= 4000
    assert engine.state == EngineState.waiting(0)
    assert len(engine.trials) == 1
    assert engine.trials[0].iti_ms == req.wait_ms


def test_start_is_noop_while_running() -> None:
    engine, _clock = _engine()
    assert engine.start() is not None
    assert engine.start() is None
    assert engine.run_id == 1


def test_reaction_and_false_start_threshold() -> None:
    engine, clock = _engine(target_trials=5)
    engine.start()

    clock.set(1000.0)
    timeout = engine.mark_stimulus_on(0, clock.now())
    assert timeout is not None
    assert timeout.kind is TimerKind.TIMEOUT
    assert timeout.wait_ms == 500
    assert engine.state == EngineState.stimulus_active(0)

    clock.advance(99.0)
    step = engine.register_response(clock.now())
    assert step.kind is StepKind.NEXT_SCHEDULED
    assert engine.trials[0].outcome.kind is PvtOutcomeKind.FALSE_START
    assert engine.false_starts == 1

    clock.set(2000.0)
    engine.mark_stimulus_on(1, clock.now())
    clock.advance(100.0)
    engine.register_response(clock.now())
    second = engine.trials[1].outcome
    assert second.kind is PvtOutcomeKind.REACTION
    assert second.rt_ms == pytest.approx(100.0)


def test_response_while_waiting_is_false_start_and_advances() -> None:
    engine, clock = _engine()
    engine.start()

    step = engine.register_response(clock.now())
    assert step.kind is StepKind.NEXT_SCHEDULED
    assert step.request is not None and step.request.trial_index == 1
    assert engine.trials[0].outcome.kind is PvtOutcomeKind.FALSE_START
    assert engine.state == EngineState.waiting(1)

    # The stimulus timer for the retired trial arrives late and is ignored.
    assert engine.mark_stimulus_on(0, clock.now()) is None


def test_timeout_classifies_lapse_and_never_overwrites() -> None:
    engine, clock = _engine()
    engine.start()
    engine.mark_stimulus_on(0, clock.now())

    step = engine.register_timeout(0)
    assert step.kind is StepKind.NEXT_SCHEDULED
    assert engine.trials[0].outcome.kind is PvtOutcomeKind.LAPSE

    # A duplicate timeout for the retired trial is ignored.
    assert engine.register_timeout(0).ignored
    assert engine.trials[0].outcome.kind is PvtOutcomeKind.LAPSE
    assert engine.trials[0].outcome.rt_ms is None


def test_timeout_only_valid_in_stimulus_active() -> None:
    engine, _clock = _engine()
    engine.start()
    assert engine.register_timeout(0).ignored
    assert engine.state == EngineState.waiting(0)


def test_completion_after_target_trials() -> None:
    engine, clock = _engine()
    engine.start()

    for idx in range(3):
        engine.mark_stimulus_on(idx, clock.now())
        clock.advance(250.0)
        step = engine.register_response(clock.now())

    assert step.kind is StepKind.RUN_COMPLETED
    assert engine.state.phase is Phase.COMPLETED
    assert engine.completed_trials() == 3
    assert engine.run_finished_at == clock.now()

    metrics = engine.metrics()
    assert metrics is not None
    assert metrics.reacted_trials == 3
    assert metrics.median_rt_ms == pytest.approx(250.0)

    # Engine can be restarted once completed.
    assert engine.start() is not None
    assert engine.run_id == 2
    assert len(engine.trials) == 1


def test_metrics_unavailable_until_completed() -> None:
    engine, _clock = _engine()
    assert engine.metrics() is None
    engine.start()
    assert engine.metrics() is None
    engine.abort()
    assert engine.metrics() is None


def test_abort_is_unconditional_and_stamps_finish() -> None:
    engine, clock = _engine()
    engine.abort()
    assert engine.state == EngineState.aborted()

    engine.start()
    clock.set(42.0)
    engine.abort()
    assert engine.state.phase is Phase.ABORTED
    assert engine.run_finished_at == 42.0
    assert engine.register_response(clock.now()).ignored


def test_stale_events_are_ignored_after_abort_and_restart() -> None:
    engine, clock = _engine()
    old = engine.start()
    assert old is not None
    engine.abort()
    new = engine.start()
    assert new is not None and new.run_id == old.run_id + 1

    assert engine.mark_stimulus_on(old.trial_index, clock.now(), run_id=old.run_id) is None
    assert engine.register_response(clock.now(), run_id=old.run_id).ignored
    assert engine.state == EngineState.waiting(0)
    assert engine.trials[0].stimulus_at is None

    timeout = engine.mark_stimulus_on(0, clock.now(), run_id=new.run_id)
    assert timeout is not None
    assert engine.register_timeout(0, run_id=old.run_id).ignored
    assert engine.state == EngineState.stimulus_active(0)


def test_onset_offset_is_measured_from_run_start() -> None:
    engine, clock = _engine()
    clock.set(5000.0)
    engine.start()
    clock.advance(1234.0)
    engine.mark_stimulus_on(0, clock.now())
    assert engine.trials[0].onset_since_start_ms == pytest.approx(1234.0)


def test_iti_draws_are_reproducible_for_seeded_rng() -> None:
    cfg = PvtConfig(target_trials=5, min_iti_ms=2000, max_iti_ms=10000)
    a = PvtEngine(cfg, clock=ManualClock(), rng=np.random.default_rng(7))
    b = PvtEngine(cfg, clock=ManualClock(), rng=np.random.default_rng(7))
    assert a.start() == b.start()


def test_snapshot_is_detached_copy() -> None:
    engine, clock = _engine()
    engine.start()
    snap = engine.snapshot()
    engine.mark_stimulus_on(0, clock.now())

    assert snap.state == EngineState.waiting(0)
    assert snap.trials[0].stimulus_at is None
    assert snap.target_trials == 3
    assert snap.completed_trials == 0


def test_invalid_config_raises() -> None:
    with pytest.raises(ConfigValidationError, match="max_iti_ms"):
        PvtEngine(PvtConfig(min_iti_ms=5000, max_iti_ms=1000))
    with pytest.raises(ConfigValidationError, match="target_trials"):
        PvtEngine(PvtConfig(target_trials=0))


def test_response_pinned_to_retired_trial_is_ignored() -> None:
    engine, clock = _engine()
    engine.start()
    engine.mark_stimulus_on(0, clock.now())
    engine.register_timeout(0)
    engine.mark_stimulus_on(1, clock.now())

    clock.advance(150.0)
    assert engine.register_response(clock.now(), trial_index=0).ignored
    assert engine.trials[1].outcome.kind is PvtOutcomeKind.PENDING
    step = engine.register_response(clock.now(), trial_index=1)
    assert step.kind is StepKind.NEXT_SCHEDULED
    assert engine.trials[1].outcome.rt_ms == pytest.approx(150.0)
