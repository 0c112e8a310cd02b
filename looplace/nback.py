from __future__ import annotations

# 2-back trial engine: seeded letter sequences, stimulus/response windows and
# hit/miss/false-alarm/correct-rejection classification.

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum

import numpy as np

from looplace.config import NBackConfig
from looplace.nback_metrics import NBackMetrics, compute_nback_metrics
from looplace.timing import Clock, Instant, MonotonicClock, duration_ms
from looplace.types import (
    NBACK_CORRECT_REJECTION,
    NBACK_MISS,
    EngineState,
    NBackOutcome,
    NBackOutcomeKind,
    NBackTrial,
    Phase,
    RunMode,
    ScheduleRequest,
    TimerKind,
    TrialResponse,
)
from looplace.validate import validate_nback_config

logger = logging.getLogger(__name__)

LETTER_POOL: tuple[str, ...] = tuple("BCDFGHJKMPQRSTVWXYZ")


class ResponseKind(str, Enum):
    HIT = "hit"
    FALSE_ALARM = "false_alarm"


@dataclass(frozen=True)
class ResponseOutcome:
    kind: ResponseKind | None = None  # None means the response was ignored

    @property
    def ignored(self) -> bool:
        return self.kind is None


@dataclass(frozen=True)
class TrialSchedule:
    stimulus: ScheduleRequest
    advance: ScheduleRequest


class AdvanceKind(str, Enum):
    NEXT = "next"
    COMPLETED = "completed"
    IGNORED = "ignored"


@dataclass(frozen=True)
class AdvanceOutcome:
    kind: AdvanceKind
    schedule: TrialSchedule | None = None
    mode: RunMode | None = None

    @property
    def ignored(self) -> bool:
        return self.kind is AdvanceKind.IGNORED


@dataclass(frozen=True)
class NBackSnapshot:
    state: EngineState
    run_id: int
    trials: tuple[NBackTrial, ...]
    completed_trials: int
    total_trials: int


def _round_half_away(x: float) -> int:
    return int(math.floor(abs(x) + 0.5)) * (1 if x >= 0 else -1)


def target_quota(length: int, target_ratio: float) -> int:
    candidates = max(0, length - 2)
    if candidates == 0:
        return 0
    quota = _round_half_away(candidates * target_ratio)
    if quota <= 0 and target_ratio > 0:
        quota = 1
    return max(0, min(quota, candidates))


def _random_letter(rng: np.random.Generator, disallow: str | None = None) -> str:
    pool = LETTER_POOL
    if disallow is not None:
        pool = tuple(c for c in LETTER_POOL if c != disallow)
    return pool[int(rng.integers(len(pool)))]


def generate_sequence(
    length: int, target_ratio: float, rng: np.random.Generator
) -> list[NBackTrial]:
    """Build a 2-back letter sequence with a fixed target quota.

    Chosen target positions copy the letter from two back; every other
    position avoids it. Flags are then recomputed from the letters alone.
    """

    if length <= 0:
        return []

    letters = [_random_letter(rng) for _ in range(min(length, 2))]

    quota = target_quota(length, target_ratio)
    chosen: list[int] = []
    if quota:
        picks = rng.choice(np.arange(2, length), size=quota, replace=False)
        chosen = sorted(int(i) for i in picks)
    chosen_set = set(chosen)

    for idx in range(2, length):
        if idx in chosen_set:
            letters.append(letters[idx - 2])
        else:
            letters.append(_random_letter(rng, disallow=letters[idx - 2]))

    return [
        NBackTrial(
            index=idx,
            letter=letter,
            is_target=idx >= 2 and letter == letters[idx - 2],
            is_lure=idx >= 1 and letter == letters[idx - 1],
        )
        for idx, letter in enumerate(letters)
    ]


class NBackEngine:
    def __init__(
        self, config: NBackConfig | None = None, *, clock: Clock | None = None
    ) -> None:
        self.config = config or NBackConfig()
        validate_nback_config(self.config)
        self.clock: Clock = clock or MonotonicClock()

        self.state = EngineState.idle()
        self.run_id = 0
        self.run_finished_at: Instant | None = None
        self._trials: list[NBackTrial] = []
        self._last_metrics: dict[RunMode, NBackMetrics] = {}

    @property
    def trials(self) -> tuple[NBackTrial, ...]:
        return tuple(self._trials)

    def practice_metrics(self) -> NBackMetrics | None:
        return self._last_metrics.get(RunMode.PRACTICE)

    def main_metrics(self) -> NBackMetrics | None:
        return self._last_metrics.get(RunMode.MAIN)

    def snapshot(self) -> NBackSnapshot:
        return NBackSnapshot(
            state=self.state,
            run_id=self.run_id,
            trials=tuple(replace(t) for t in self._trials),
            completed_trials=sum(1 for t in self._trials if t.is_completed()),
            total_trials=len(self._trials),
        )

    def seed_for(self, mode: RunMode, run_id: int) -> int:
        return self.config.seed ^ mode.seed_tag ^ run_id

    def start(self, mode: RunMode = RunMode.MAIN) -> TrialSchedule | None:
        if self.state.is_running:
            logger.debug("start ignored: run %d still active", self.run_id)
            return None

        self.run_id += 1
        length = (
            self.config.practice_trials
            if mode is RunMode.PRACTICE
            else self.config.total_trials
        )
        rng = np.random.default_rng(self.seed_for(mode, self.run_id))
        self._trials = generate_sequence(length, self.config.target_ratio, rng)
        self.run_finished_at = None
        self.state = EngineState.waiting(0, mode)

        logger.info(
            "2-back %s run %d started (%d trials)", mode.value, self.run_id, length
        )
        return self._schedule(0)

    def abort(self) -> None:
        self.state = EngineState.aborted()
        self.run_finished_at = self.clock.now()
        logger.info("2-back run %d aborted", self.run_id)

    def mark_stimulus_on(
        self, trial_index: int, now: Instant, *, run_id: int | None = None
    ) -> bool:
        if self._stale(run_id) or not self.state.is_waiting_for(trial_index):
            logger.debug("stimulus for trial %d ignored in %s", trial_index, self.state)
            return False
        if trial_index >= len(self._trials):
            return False

        self._trials[trial_index].presented_at = now
        self.state = EngineState.stimulus_active(trial_index, self.state.mode)
        return True

    def register_response(
        self,
        now: Instant,
        *,
        run_id: int | None = None,
        trial_index: int | None = None,
    ) -> ResponseOutcome:
        if self._stale(run_id) or self.state.phase is not Phase.STIMULUS_ACTIVE:
            return ResponseOutcome()
        if trial_index is not None and not self.state.is_active_for(trial_index):
            logger.debug("response for trial %d ignored in %s", trial_index, self.state)
            return ResponseOutcome()

        idx = self.state.trial_index
        assert idx is not None
        trial = self._trials[idx]
        if trial.response is not None or trial.presented_at is None:
            return ResponseOutcome()

        rt = duration_ms(trial.presented_at, now)
        trial.response = TrialResponse(timestamp=now, rt_ms=rt)
        if trial.is_target:
            trial.outcome = NBackOutcome.hit(rt)
            return ResponseOutcome(ResponseKind.HIT)
        trial.outcome = NBackOutcome.false_alarm(rt)
        return ResponseOutcome(ResponseKind.FALSE_ALARM)

    def advance(self, trial_index: int, *, run_id: int | None = None) -> AdvanceOutcome:
        """Retire the current trial and schedule the next, or finish the run."""

        state = self.state
        if self._stale(run_id) or not (
            state.is_waiting_for(trial_index) or state.is_active_for(trial_index)
        ):
            logger.debug("advance for trial %d ignored in %s", trial_index, state)
            return AdvanceOutcome(AdvanceKind.IGNORED)

        mode = state.mode or RunMode.MAIN
        trial = self._trials[trial_index]
        if trial.outcome.kind is NBackOutcomeKind.PENDING:
            trial.outcome = NBACK_MISS if trial.is_target else NBACK_CORRECT_REJECTION

        next_index = trial_index + 1
        if next_index >= len(self._trials):
            self.state = EngineState.completed(mode)
            self.run_finished_at = self.clock.now()
            metrics = compute_nback_metrics(self._trials)
            self._last_metrics[mode] = metrics
            logger.info(
                "2-back %s run %d completed (d'=%.3f)",
                mode.value,
                self.run_id,
                metrics.d_prime,
            )
            return AdvanceOutcome(AdvanceKind.COMPLETED, mode=mode)

        self.state = EngineState.waiting(next_index, mode)
        return AdvanceOutcome(
            AdvanceKind.NEXT, schedule=self._schedule(next_index), mode=mode
        )

    def _stale(self, run_id: int | None) -> bool:
        return run_id is not None and run_id != self.run_id

    def _schedule(self, trial_index: int) -> TrialSchedule:
        wait = (
            self.config.lead_in_ms
            if trial_index == 0
            else self.config.interstimulus_interval_ms
        )
        return TrialSchedule(
            stimulus=ScheduleRequest(
                run_id=self.run_id,
                trial_index=trial_index,
                wait_ms=wait,
                kind=TimerKind.STIMULUS,
            ),
            advance=ScheduleRequest(
                run_id=self.run_id,
                trial_index=trial_index,
                wait_ms=self.config.response_window_ms,
                kind=TimerKind.ADVANCE,
            ),
        )
