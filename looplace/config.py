from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any

# Responses faster than this are anticipations, not reactions.
FALSE_START_MS = 100.0
# Reaction times at or above this count as full lapses.
LAPSE_MS = 500.0
MINOR_LAPSE_MS = 355.0


def _pick(cls: type, obj: dict[str, Any]) -> dict[str, Any]:
    known = {f.name: f.type for f in fields(cls)}
    out: dict[str, Any] = {}
    for key, value in obj.items():
        if key not in known:
            continue
        out[key] = float(value) if known[key] == "float" else int(value)
    return out


@dataclass(frozen=True)
class PvtConfig:
    target_trials: int = 60
    min_iti_ms: int = 2_000
    max_iti_ms: int = 10_000
    max_response_ms: int = 3_000
    min_reaction_trials: int = 20
    seed: int = 1

    @staticmethod
    def from_json(obj: dict[str, Any] | None) -> "PvtConfig":
        return PvtConfig(**_pick(PvtConfig, obj or {}))

    def to_json(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NBackConfig:
    total_trials: int = 60
    practice_trials: int = 12
    target_ratio: float = 0.3
    stimulus_ms: int = 500
    interstimulus_interval_ms: int = 2_500
    lead_in_ms: int = 750
    response_window_ms: int = 3_000
    seed: int = 1

    @staticmethod
    def from_json(obj: dict[str, Any] | None) -> "NBackConfig":
        return NBackConfig(**_pick(NBackConfig, obj or {}))

    def to_json(self) -> dict[str, Any]:
        return asdict(self)
