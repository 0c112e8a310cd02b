from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass, fields
from typing import Any

from looplace.config import LAPSE_MS, MINOR_LAPSE_MS
from looplace.stats import mean, ols_slope, percentile, sample_sd
from looplace.timing import ms_to_minutes
from looplace.types import PvtOutcomeKind, PvtTrial


@dataclass(frozen=True)
class PvtMetrics:
    total_trials: int = 0
    reacted_trials: int = 0
    median_rt_ms: float = 0.0
    mean_rt_ms: float = 0.0
    sd_rt_ms: float = 0.0
    p10_rt_ms: float = 0.0
    p90_rt_ms: float = 0.0
    lapses_ge_500ms: int = 0
    minor_lapses_355_499ms: int = 0
    false_starts: int = 0
    time_on_task_slope_ms_per_min: float = 0.0
    meets_min_trial_requirement: bool = False

    def to_json(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_json(obj: dict[str, Any]) -> "PvtMetrics":
        names = {f.name for f in fields(PvtMetrics)}
        missing = names - set(obj)
        if missing:
            raise KeyError(f"PVT metrics missing fields: {sorted(missing)}")
        return PvtMetrics(**{k: obj[k] for k in names})


def compute_pvt_metrics(
    trials: Sequence[PvtTrial], *, false_starts: int, min_required: int
) -> PvtMetrics:
    """Score a finished PVT run.

    Lapses are timeouts plus reactions at or above 500 ms; minor lapses are
    reactions in [355, 500). The time-on-task slope regresses reaction time on
    stimulus onset (minutes since run start) over reaction trials only.
    """

    total_trials = sum(1 for t in trials if t.is_completed())

    reaction_times: list[float] = []
    onsets_min: list[float] = []
    lapses = 0
    minor_lapses = 0

    for trial in trials:
        kind = trial.outcome.kind
        if kind is PvtOutcomeKind.REACTION:
            rt = float(trial.outcome.rt_ms or 0.0)
            reaction_times.append(rt)
            onsets_min.append(ms_to_minutes(trial.onset_since_start_ms or 0.0))
            if rt >= LAPSE_MS:
                lapses += 1
            elif rt >= MINOR_LAPSE_MS:
                minor_lapses += 1
        elif kind is PvtOutcomeKind.LAPSE:
            lapses += 1

    if not reaction_times:
        return PvtMetrics(
            total_trials=total_trials,
            false_starts=int(false_starts),
            meets_min_trial_requirement=False,
        )

    values_sorted = sorted(reaction_times)
    avg = mean(reaction_times)

    return PvtMetrics(
        total_trials=total_trials,
        reacted_trials=len(reaction_times),
        median_rt_ms=percentile(values_sorted, 0.5),
        mean_rt_ms=avg,
        sd_rt_ms=sample_sd(reaction_times, avg),
        p10_rt_ms=percentile(values_sorted, 0.10),
        p90_rt_ms=percentile(values_sorted, 0.90),
        lapses_ge_500ms=lapses,
        minor_lapses_355_499ms=minor_lapses,
        false_starts=int(false_starts),
        time_on_task_slope_ms_per_min=ols_slope(onsets_min, reaction_times),
        meets_min_trial_requirement=len(reaction_times) >= min_required,
    )
