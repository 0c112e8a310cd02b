from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

TASK_PVT = "pvt"
TASK_NBACK = "nback2"


class RunMode(str, Enum):
    PRACTICE = "practice"
    MAIN = "main"

    @property
    def seed_tag(self) -> int:
        if self is RunMode.PRACTICE:
            return 0x41_5052_4143_5449  # "APRACTI"
        return 0x4D_4149_4E52_554E  # "MAINRUN"


class Phase(str, Enum):
    IDLE = "idle"
    WAITING = "waiting"
    STIMULUS_ACTIVE = "stimulus_active"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class EngineState:
    phase: Phase
    trial_index: int | None = None
    mode: RunMode | None = None

    @staticmethod
    def idle() -> "EngineState":
        return EngineState(Phase.IDLE)

    @staticmethod
    def waiting(trial_index: int, mode: RunMode | None = None) -> "EngineState":
        return EngineState(Phase.WAITING, trial_index, mode)

    @staticmethod
    def stimulus_active(
        trial_index: int, mode: RunMode | None = None
    ) -> "EngineState":
        return EngineState(Phase.STIMULUS_ACTIVE, trial_index, mode)

    @staticmethod
    def completed(mode: RunMode | None = None) -> "EngineState":
        return EngineState(Phase.COMPLETED, None, mode)

    @staticmethod
    def aborted() -> "EngineState":
        return EngineState(Phase.ABORTED)

    @property
    def is_running(self) -> bool:
        return self.phase in (Phase.WAITING, Phase.STIMULUS_ACTIVE)

    def is_waiting_for(self, trial_index: int) -> bool:
        return self.phase is Phase.WAITING and self.trial_index == trial_index

    def is_active_for(self, trial_index: int) -> bool:
        return self.phase is Phase.STIMULUS_ACTIVE and self.trial_index == trial_index


class TimerKind(str, Enum):
    STIMULUS = "stimulus"  # fire mark_stimulus_on
    TIMEOUT = "timeout"  # fire register_timeout (PVT)
    ADVANCE = "advance"  # fire advance (2-back)


@dataclass(frozen=True)
class ScheduleRequest:
    """Ask the driving loop to re-inject an event after ``wait_ms``."""

    run_id: int
    trial_index: int
    wait_ms: int
    kind: TimerKind = TimerKind.STIMULUS


class PvtOutcomeKind(str, Enum):
    PENDING = "pending"
    REACTION = "reaction"
    LAPSE = "lapse"
    FALSE_START = "false_start"


@dataclass(frozen=True)
class PvtOutcome:
    kind: PvtOutcomeKind = PvtOutcomeKind.PENDING
    rt_ms: float | None = None

    @staticmethod
    def reaction(rt_ms: float) -> "PvtOutcome":
        return PvtOutcome(PvtOutcomeKind.REACTION, float(rt_ms))


PVT_PENDING = PvtOutcome()
PVT_LAPSE = PvtOutcome(PvtOutcomeKind.LAPSE)
PVT_FALSE_START = PvtOutcome(PvtOutcomeKind.FALSE_START)


@dataclass
class PvtTrial:
    index: int
    iti_ms: int
    stimulus_at: float | None = None
    onset_since_start_ms: float | None = None
    responded_at: float | None = None
    outcome: PvtOutcome = PVT_PENDING

    def is_completed(self) -> bool:
        return self.outcome.kind is not PvtOutcomeKind.PENDING


class NBackOutcomeKind(str, Enum):
    PENDING = "pending"
    HIT = "hit"
    MISS = "miss"
    FALSE_ALARM = "false_alarm"
    CORRECT_REJECTION = "correct_rejection"


@dataclass(frozen=True)
class NBackOutcome:
    kind: NBackOutcomeKind = NBackOutcomeKind.PENDING
    rt_ms: float | None = None

    @staticmethod
    def hit(rt_ms: float) -> "NBackOutcome":
        return NBackOutcome(NBackOutcomeKind.HIT, float(rt_ms))

    @staticmethod
    def false_alarm(rt_ms: float) -> "NBackOutcome":
        return NBackOutcome(NBackOutcomeKind.FALSE_ALARM, float(rt_ms))


NBACK_PENDING = NBackOutcome()
NBACK_MISS = NBackOutcome(NBackOutcomeKind.MISS)
NBACK_CORRECT_REJECTION = NBackOutcome(NBackOutcomeKind.CORRECT_REJECTION)


@dataclass(frozen=True)
class TrialResponse:
    timestamp: float
    rt_ms: float


@dataclass
class NBackTrial:
    index: int
    letter: str
    is_target: bool
    is_lure: bool
    presented_at: float | None = None
    response: TrialResponse | None = None
    outcome: NBackOutcome = NBACK_PENDING

    def is_completed(self) -> bool:
        return self.outcome.kind is not NBackOutcomeKind.PENDING
