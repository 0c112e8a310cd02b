from __future__ import annotations

import csv
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from looplace.types import NBackTrial, PvtTrial


def write_summary_json(path: Path, summary: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary, indent=2, sort_keys=True), encoding="utf-8")


def read_summary_json(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text(encoding="utf-8"))


def write_pvt_trials_csv(path: Path, trials: Sequence[PvtTrial]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(
            [
                "index",
                "iti_ms",
                "onset_since_start_ms",
                "outcome",
                "rt_ms",
            ]
        )
        for t in trials:
            w.writerow(
                [
                    t.index,
                    t.iti_ms,
                    "" if t.onset_since_start_ms is None else t.onset_since_start_ms,
                    t.outcome.kind.value,
                    "" if t.outcome.rt_ms is None else t.outcome.rt_ms,
                ]
            )


def write_nback_trials_csv(path: Path, trials: Sequence[NBackTrial]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(
            [
                "index",
                "letter",
                "is_target",
                "is_lure",
                "outcome",
                "rt_ms",
            ]
        )
        for t in trials:
            w.writerow(
                [
                    t.index,
                    t.letter,
                    int(t.is_target),
                    int(t.is_lure),
                    t.outcome.kind.value,
                    "" if t.outcome.rt_ms is None else t.outcome.rt_ms,
                ]
            )
