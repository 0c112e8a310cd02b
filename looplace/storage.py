"""Local persistence of completed-run summaries.

Summaries live in one JSON document (a list of records, oldest first). The
store never mutates the metrics it is handed; a failed write raises
``StorageError`` and leaves the caller's record intact for a retry.
"""

from __future__ import annotations

import json
import logging
import platform
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from looplace.nback_metrics import NBackMetrics
from looplace.pvt_metrics import PvtMetrics
from looplace.types import TASK_NBACK, TASK_PVT

logger = logging.getLogger(__name__)

KNOWN_TASKS = (TASK_PVT, TASK_NBACK)


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class QualityFlags:
    focus_lost_events: int = 0
    visibility_blur_events: int = 0
    min_trials_met: bool = True

    @staticmethod
    def from_json(obj: dict[str, Any] | None) -> "QualityFlags":
        obj = obj or {}
        return QualityFlags(
            focus_lost_events=int(obj.get("focus_lost_events", 0)),
            visibility_blur_events=int(obj.get("visibility_blur_events", 0)),
            min_trials_met=bool(obj.get("min_trials_met", True)),
        )


@dataclass(frozen=True)
class ClientInfo:
    platform: str = ""
    tz: str = ""

    @staticmethod
    def detect() -> "ClientInfo":
        return ClientInfo(platform=platform.system(), tz=time.strftime("%Z"))

    @staticmethod
    def from_json(obj: dict[str, Any] | None) -> "ClientInfo":
        obj = obj or {}
        return ClientInfo(platform=str(obj.get("platform", "")), tz=str(obj.get("tz", "")))


@dataclass(frozen=True)
class SummaryRecord:
    id: str
    task: str
    created_at: str  # RFC 3339, UTC
    metrics: dict[str, Any]
    qc: QualityFlags = field(default_factory=QualityFlags)
    client: ClientInfo = field(default_factory=ClientInfo)

    def to_json(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_json(obj: dict[str, Any]) -> "SummaryRecord":
        return SummaryRecord(
            id=str(obj["id"]),
            task=str(obj["task"]),
            created_at=str(obj["created_at"]),
            metrics=dict(obj.get("metrics", {})),
            qc=QualityFlags.from_json(obj.get("qc")),
            client=ClientInfo.from_json(obj.get("client")),
        )


def _utc_now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


class SummaryStore:
    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load_all(self) -> list[SummaryRecord]:
        """All records, newest first."""

        # Ties on created_at fall back to insertion order.
        ordered = sorted(
            enumerate(self._read()), key=lambda p: (p[1].created_at, p[0]), reverse=True
        )
        return [record for _pos, record in ordered]

    def get(self, record_id: str) -> SummaryRecord | None:
        for record in self._read():
            if record.id == record_id:
                return record
        return None

    def latest(self, task: str) -> SummaryRecord | None:
        for record in self.load_all():
            if record.task == task:
                return record
        return None

    def save(
        self,
        task: str,
        metrics: PvtMetrics | NBackMetrics | dict[str, Any],
        *,
        qc: QualityFlags | None = None,
        client: ClientInfo | None = None,
    ) -> SummaryRecord:
        if task not in KNOWN_TASKS:
            raise StorageError(f"Unknown task id: {task!r}")

        payload = metrics if isinstance(metrics, dict) else metrics.to_json()
        record = SummaryRecord(
            id=uuid.uuid4().hex,
            task=task,
            created_at=_utc_now_rfc3339(),
            metrics=dict(payload),
            qc=qc or QualityFlags(),
            client=client or ClientInfo.detect(),
        )

        records = self._read()
        records.append(record)
        self._write(records)
        logger.info("saved %s summary %s to %s", task, record.id, self.path)
        return record

    def delete(self, record_id: str) -> bool:
        records = self._read()
        kept = [r for r in records if r.id != record_id]
        if len(kept) == len(records):
            return False
        self._write(kept)
        return True

    def _read(self) -> list[SummaryRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return [SummaryRecord.from_json(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("could not read summaries from %s: %s", self.path, e)
            raise StorageError(f"Could not read {self.path}: {e}") from e

    def _write(self, records: list[SummaryRecord]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(
                json.dumps([r.to_json() for r in records], indent=2, sort_keys=True),
                encoding="utf-8",
            )
            tmp.replace(self.path)
        except OSError as e:
            logger.warning("could not write summaries to %s: %s", self.path, e)
            raise StorageError(f"Could not write {self.path}: {e}") from e


def parse_pvt_metrics(record: SummaryRecord) -> PvtMetrics | None:
    try:
        return PvtMetrics.from_json(record.metrics)
    except (KeyError, TypeError):
        return None


def parse_nback_metrics(record: SummaryRecord) -> NBackMetrics | None:
    try:
        return NBackMetrics.from_json(record.metrics)
    except (KeyError, TypeError):
        return None
