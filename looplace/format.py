from __future__ import annotations

# Display helpers for stored summaries.

from looplace.storage import SummaryRecord, parse_nback_metrics, parse_pvt_metrics
from looplace.types import TASK_NBACK, TASK_PVT


def format_ms(value: float) -> str:
    return f"{value:.0f} ms"


def format_slope(value: float) -> str:
    return f"{value:.2f} ms/min"


def format_percent(value: float) -> str:
    return f"{value * 100.0:.1f}%"


def format_number(value: float, digits: int) -> str:
    return f"{value:.{digits}f}"


def task_label(task: str) -> str:
    if task == TASK_PVT:
        return "Psychomotor Vigilance"
    if task == TASK_NBACK:
        return "2-back working memory"
    return "Session"


def qc_summary(record: SummaryRecord) -> str:
    qc = record.qc
    parts: list[str] = []
    if qc.focus_lost_events > 0:
        parts.append(f"Focus lost ×{qc.focus_lost_events}")
    if qc.visibility_blur_events > 0:
        parts.append(f"Window blur ×{qc.visibility_blur_events}")
    if not qc.min_trials_met:
        parts.append("Min trials not met")

    if not parts:
        return "QC: clean run"
    return "QC: " + ", ".join(parts)


def metric_snippets(record: SummaryRecord) -> list[tuple[str, str]]:
    if record.task == TASK_PVT:
        pvt = parse_pvt_metrics(record)
        if pvt is None:
            return [("Metrics", "Unavailable")]
        return [
            ("Median RT", format_ms(pvt.median_rt_ms)),
            ("Lapses", str(pvt.lapses_ge_500ms)),
            ("False starts", str(pvt.false_starts)),
        ]
    if record.task == TASK_NBACK:
        nback = parse_nback_metrics(record)
        if nback is None:
            return [("Metrics", "Unavailable")]
        return [
            ("Accuracy", format_percent(nback.accuracy)),
            ("d′", format_number(nback.d_prime, 2)),
            ("Responses", str(nback.response_count)),
        ]
    return [("Task", "Unknown")]
