from __future__ import annotations

# Psychomotor Vigilance Task trial engine.
#
# The engine never blocks and never owns timers. Every mutating call returns
# what the caller should schedule next; events from an older run (stale
# run_id) or for a trial that is no longer current are ignored.

import logging
from dataclasses import dataclass, replace
from enum import Enum

import numpy as np

from looplace.config import FALSE_START_MS, PvtConfig
from looplace.pvt_metrics import PvtMetrics, compute_pvt_metrics
from looplace.timing import Clock, Instant, MonotonicClock, duration_ms
from looplace.types import (
    PVT_FALSE_START,
    PVT_LAPSE,
    EngineState,
    Phase,
    PvtOutcome,
    PvtTrial,
    ScheduleRequest,
    TimerKind,
)
from looplace.validate import validate_pvt_config

logger = logging.getLogger(__name__)


class StepKind(str, Enum):
    NEXT_SCHEDULED = "next_scheduled"
    RUN_COMPLETED = "run_completed"
    IGNORED = "ignored"


@dataclass(frozen=True)
class StepOutcome:
    kind: StepKind
    request: ScheduleRequest | None = None

    @property
    def ignored(self) -> bool:
        return self.kind is StepKind.IGNORED


IGNORED = StepOutcome(StepKind.IGNORED)


@dataclass(frozen=True)
class PvtSnapshot:
    state: EngineState
    run_id: int
    trials: tuple[PvtTrial, ...]
    completed_trials: int
    target_trials: int
    false_starts: int


class PvtEngine:
    def __init__(
        self,
        config: PvtConfig | None = None,
        *,
        clock: Clock | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.config = config or PvtConfig()
        validate_pvt_config(self.config)
        self.clock: Clock = clock or MonotonicClock()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)

        self.state = EngineState.idle()
        self.run_id = 0
        self.false_starts = 0
        self.run_started_at: Instant | None = None
        self.run_finished_at: Instant | None = None
        self._trials: list[PvtTrial] = []

    @property
    def trials(self) -> tuple[PvtTrial, ...]:
        return tuple(self._trials)

    def completed_trials(self) -> int:
        return sum(1 for t in self._trials if t.is_completed())

    def snapshot(self) -> PvtSnapshot:
        return PvtSnapshot(
            state=self.state,
            run_id=self.run_id,
            trials=tuple(replace(t) for t in self._trials),
            completed_trials=self.completed_trials(),
            target_trials=self.config.target_trials,
            false_starts=self.false_starts,
        )

    def start(self) -> ScheduleRequest | None:
        if self.state.is_running:
            logger.debug("start ignored: run %d still active", self.run_id)
            return None

        self.run_id += 1
        self._trials = []
        self.false_starts = 0
        self.run_started_at = self.clock.now()
        self.run_finished_at = None

        logger.info("PVT run %d started", self.run_id)
        return self._open_trial(0)

    def abort(self) -> None:
        self.state = EngineState.aborted()
        self.run_finished_at = self.clock.now()
        logger.info("PVT run %d aborted", self.run_id)

    def mark_stimulus_on(
        self, trial_index: int, now: Instant, *, run_id: int | None = None
    ) -> ScheduleRequest | None:
        """Record stimulus onset; returns the response-timeout request."""

        if self._stale(run_id) or not self.state.is_waiting_for(trial_index):
            logger.debug("stimulus for trial %d ignored in %s", trial_index, self.state)
            return None

        trial = self._trials[trial_index]
        trial.stimulus_at = now
        if self.run_started_at is not None:
            trial.onset_since_start_ms = duration_ms(self.run_started_at, now)
        self.state = EngineState.stimulus_active(trial_index)

        return ScheduleRequest(
            run_id=self.run_id,
            trial_index=trial_index,
            wait_ms=self.config.max_response_ms,
            kind=TimerKind.TIMEOUT,
        )

    def register_response(
        self,
        now: Instant,
        *,
        run_id: int | None = None,
        trial_index: int | None = None,
    ) -> StepOutcome:
        """Score a press; `trial_index` pins it to the trial it was meant for."""

        if self._stale(run_id):
            return IGNORED
        if trial_index is not None and self.state.trial_index != trial_index:
            logger.debug("response for trial %d ignored in %s", trial_index, self.state)
            return IGNORED

        phase = self.state.phase
        if phase not in (Phase.WAITING, Phase.STIMULUS_ACTIVE):
            return IGNORED

        idx = self.state.trial_index
        assert idx is not None
        trial = self._trials[idx]
        trial.responded_at = now

        if phase is Phase.WAITING or trial.stimulus_at is None:
            outcome = PVT_FALSE_START
        else:
            rt = duration_ms(trial.stimulus_at, now)
            outcome = PVT_FALSE_START if rt < FALSE_START_MS else PvtOutcome.reaction(rt)

        if outcome is PVT_FALSE_START:
            self.false_starts += 1
        return self._retire(trial, outcome)

    def register_timeout(
        self, trial_index: int, *, run_id: int | None = None
    ) -> StepOutcome:
        if self._stale(run_id) or not self.state.is_active_for(trial_index):
            logger.debug("timeout for trial %d ignored in %s", trial_index, self.state)
            return IGNORED
        return self._retire(self._trials[trial_index], PVT_LAPSE)

    def metrics(self) -> PvtMetrics | None:
        if self.state.phase is not Phase.COMPLETED:
            return None
        return compute_pvt_metrics(
            self._trials,
            false_starts=self.false_starts,
            min_required=self.config.min_reaction_trials,
        )

    def _stale(self, run_id: int | None) -> bool:
        return run_id is not None and run_id != self.run_id

    def _draw_iti(self) -> int:
        lo = self.config.min_iti_ms
        hi = self.config.max_iti_ms
        return int(self.rng.integers(lo, hi, endpoint=True))

    def _open_trial(self, index: int) -> ScheduleRequest:
        iti = self._draw_iti()
        self._trials.append(PvtTrial(index=index, iti_ms=iti))
        self.state = EngineState.waiting(index)
        return ScheduleRequest(
            run_id=self.run_id, trial_index=index, wait_ms=iti, kind=TimerKind.STIMULUS
        )

    def _retire(self, trial: PvtTrial, outcome: PvtOutcome) -> StepOutcome:
        trial.outcome = outcome

        if self.completed_trials() >= self.config.target_trials:
            self.state = EngineState.completed()
            self.run_finished_at = self.clock.now()
            logger.info(
                "PVT run %d completed (%d trials, %d false starts)",
                self.run_id,
                len(self._trials),
                self.false_starts,
            )
            return StepOutcome(StepKind.RUN_COMPLETED)

        return StepOutcome(StepKind.NEXT_SCHEDULED, self._open_trial(trial.index + 1))
