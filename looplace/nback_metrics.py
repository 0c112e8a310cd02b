from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass, fields
from typing import Any

from looplace.stats import inverse_normal_cdf, mean, percentile, sample_sd
from looplace.types import NBackOutcomeKind, NBackTrial

_RATE_EPS = 1e-6


@dataclass(frozen=True)
class NBackMetrics:
    total_trials: int = 0
    target_trials: int = 0
    non_target_trials: int = 0
    hits: int = 0
    misses: int = 0
    false_alarms: int = 0
    correct_rejections: int = 0
    hit_rate: float = 0.0
    false_alarm_rate: float = 0.0
    accuracy: float = 0.0
    d_prime: float = 0.0
    criterion: float = 0.0
    mean_hit_rt_ms: float = 0.0
    median_hit_rt_ms: float = 0.0
    sd_hit_rt_ms: float = 0.0
    p10_hit_rt_ms: float = 0.0
    p90_hit_rt_ms: float = 0.0
    response_count: int = 0

    def to_json(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_json(obj: dict[str, Any]) -> "NBackMetrics":
        names = {f.name for f in fields(NBackMetrics)}
        missing = names - set(obj)
        if missing:
            raise KeyError(f"2-back metrics missing fields: {sorted(missing)}")
        return NBackMetrics(**{k: obj[k] for k in names})


def signal_detection(
    *, hits: int, false_alarms: int, target_trials: int, non_target_trials: int
) -> tuple[float, float]:
    """Return ``(d_prime, criterion)`` with the log-linear correction.

    Adding 0.5 to each count and 1 to each denominator keeps both rates off
    0 and 1, so the z-transform stays finite.
    """

    n_signal = float(max(target_trials, 1))
    n_noise = float(max(non_target_trials, 1))

    hit_rate = (hits + 0.5) / (n_signal + 1.0)
    fa_rate = (false_alarms + 0.5) / (n_noise + 1.0)

    z_hit = inverse_normal_cdf(min(1.0 - _RATE_EPS, max(_RATE_EPS, hit_rate)))
    z_fa = inverse_normal_cdf(min(1.0 - _RATE_EPS, max(_RATE_EPS, fa_rate)))

    return z_hit - z_fa, -0.5 * (z_hit + z_fa)


def compute_nback_metrics(trials: Sequence[NBackTrial]) -> NBackMetrics:
    total = len(trials)
    if total == 0:
        return NBackMetrics()

    target_trials = sum(1 for t in trials if t.is_target)
    non_target_trials = total - target_trials

    counts = {kind: 0 for kind in NBackOutcomeKind}
    hit_rts: list[float] = []
    for trial in trials:
        kind = trial.outcome.kind
        counts[kind] += 1
        if kind is NBackOutcomeKind.HIT:
            hit_rts.append(float(trial.outcome.rt_ms or 0.0))

    hits = counts[NBackOutcomeKind.HIT]
    false_alarms = counts[NBackOutcomeKind.FALSE_ALARM]
    correct_rejections = counts[NBackOutcomeKind.CORRECT_REJECTION]

    rt_stats = {"mean": 0.0, "median": 0.0, "sd": 0.0, "p10": 0.0, "p90": 0.0}
    if hit_rts:
        hit_rts.sort()
        avg = mean(hit_rts)
        rt_stats = {
            "mean": avg,
            "median": percentile(hit_rts, 0.5),
            "sd": sample_sd(hit_rts, avg),
            "p10": percentile(hit_rts, 0.10),
            "p90": percentile(hit_rts, 0.90),
        }

    d_prime, criterion = signal_detection(
        hits=hits,
        false_alarms=false_alarms,
        target_trials=target_trials,
        non_target_trials=non_target_trials,
    )

    return NBackMetrics(
        total_trials=total,
        target_trials=target_trials,
        non_target_trials=non_target_trials,
        hits=hits,
        misses=counts[NBackOutcomeKind.MISS],
        false_alarms=false_alarms,
        correct_rejections=correct_rejections,
        hit_rate=hits / target_trials if target_trials else 0.0,
        false_alarm_rate=false_alarms / non_target_trials if non_target_trials else 0.0,
        accuracy=(hits + correct_rejections) / total,
        d_prime=d_prime,
        criterion=criterion,
        mean_hit_rt_ms=rt_stats["mean"],
        median_hit_rt_ms=rt_stats["median"],
        sd_hit_rt_ms=rt_stats["sd"],
        p10_hit_rt_ms=rt_stats["p10"],
        p90_hit_rt_ms=rt_stats["p90"],
        response_count=hits + false_alarms,
    )
