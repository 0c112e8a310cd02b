from __future__ import annotations

# Headless driving loop for deterministic replays.
#
# Timers live in a heap keyed by (due_ms, seq) on a ManualClock. Events are
# drained strictly one at a time, so the engines see exactly the serial event
# order a UI timer loop would produce. Each callback captures the run_id that
# was live when it was scheduled; the engines discard stale ones.

import heapq
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

import numpy as np

from looplace.config import NBackConfig, PvtConfig
from looplace.nback import NBackEngine, TrialSchedule
from looplace.nback_metrics import NBackMetrics
from looplace.pvt import PvtEngine, StepKind, StepOutcome
from looplace.pvt_metrics import PvtMetrics
from looplace.timing import ManualClock
from looplace.types import RunMode, ScheduleRequest

logger = logging.getLogger(__name__)


@dataclass
class VirtualLoop:
    clock: ManualClock = field(default_factory=ManualClock)
    _heap: list[tuple[float, int, Callable[[], None]]] = field(default_factory=list)
    _seq: int = 0
    dispatched: int = 0

    def call_later(self, wait_ms: float, callback: Callable[[], None]) -> None:
        due = self.clock.now() + max(0.0, float(wait_ms))
        heapq.heappush(self._heap, (due, self._seq, callback))
        self._seq += 1

    def pending(self) -> int:
        return len(self._heap)

    def run_until_idle(self, max_events: int = 1_000_000) -> int:
        handled = 0
        while self._heap:
            if handled >= max_events:
                raise RuntimeError(f"event budget exhausted ({max_events})")
            due, _seq, callback = heapq.heappop(self._heap)
            self.clock.set(max(due, self.clock.now()))
            callback()
            handled += 1
        self.dispatched += handled
        logger.debug("drained %d events at t=%.1f ms", handled, self.clock.now())
        return handled


@dataclass(frozen=True)
class PvtReplay:
    engine: PvtEngine
    metrics: PvtMetrics | None
    events: int


@dataclass(frozen=True)
class NBackReplay:
    engine: NBackEngine
    metrics: NBackMetrics | None
    events: int


def replay_pvt(
    responses: Sequence[float | None],
    config: PvtConfig | None = None,
    *,
    loop: VirtualLoop | None = None,
    engine: PvtEngine | None = None,
) -> PvtReplay:
    """Drive one PVT run from a response script.

    Entry ``i`` is the response offset (ms) from stimulus onset for the i-th
    trial. A negative offset responds that long before onset (while still
    waiting); ``None`` never responds, so the trial times out. Trials past the
    end of the script time out.
    """

    loop = loop or VirtualLoop()
    if engine is None:
        engine = PvtEngine(config, clock=loop.clock)

    def script_for(index: int) -> float | None:
        return responses[index] if index < len(responses) else None

    def on_stimulus(req: ScheduleRequest) -> None:
        now = loop.clock.now()
        timeout = engine.mark_stimulus_on(req.trial_index, now, run_id=req.run_id)
        if timeout is None:
            return
        loop.call_later(timeout.wait_ms, lambda: on_timeout(timeout))
        offset = script_for(req.trial_index)
        if offset is not None and offset >= 0:
            loop.call_later(offset, lambda: respond(req.run_id, req.trial_index))

    def on_timeout(req: ScheduleRequest) -> None:
        on_step(engine.register_timeout(req.trial_index, run_id=req.run_id))

    def respond(run_id: int, trial_index: int) -> None:
        on_step(
            engine.register_response(
                loop.clock.now(), run_id=run_id, trial_index=trial_index
            )
        )

    def schedule(req: ScheduleRequest) -> None:
        offset = script_for(req.trial_index)
        if offset is not None and offset < 0:
            early = max(0.0, req.wait_ms + offset)
            loop.call_later(early, lambda: respond(req.run_id, req.trial_index))
        loop.call_later(req.wait_ms, lambda: on_stimulus(req))

    def on_step(outcome: StepOutcome) -> None:
        if outcome.kind is StepKind.NEXT_SCHEDULED and outcome.request is not None:
            schedule(outcome.request)

    first = engine.start()
    if first is not None:
        schedule(first)
    events = loop.run_until_idle()
    return PvtReplay(engine=engine, metrics=engine.metrics(), events=events)


def replay_nback(
    responses: Sequence[float | None],
    config: NBackConfig | None = None,
    *,
    mode: RunMode = RunMode.MAIN,
    loop: VirtualLoop | None = None,
    engine: NBackEngine | None = None,
) -> NBackReplay:
    """Drive one 2-back run; ``responses[i]`` is the RT for trial ``i`` or None."""

    loop = loop or VirtualLoop()
    if engine is None:
        engine = NBackEngine(config, clock=loop.clock)

    def on_stimulus(schedule: TrialSchedule) -> None:
        stim = schedule.stimulus
        now = loop.clock.now()
        if not engine.mark_stimulus_on(stim.trial_index, now, run_id=stim.run_id):
            return
        adv = schedule.advance
        loop.call_later(adv.wait_ms, lambda: on_advance(adv))
        rt = responses[stim.trial_index] if stim.trial_index < len(responses) else None
        if rt is not None:
            loop.call_later(rt, lambda: on_response(stim.run_id, stim.trial_index))

    def on_response(run_id: int, trial_index: int) -> None:
        engine.register_response(
            loop.clock.now(), run_id=run_id, trial_index=trial_index
        )

    def on_advance(adv: ScheduleRequest) -> None:
        outcome = engine.advance(adv.trial_index, run_id=adv.run_id)
        if outcome.schedule is not None:
            schedule_trial(outcome.schedule)

    def schedule_trial(schedule: TrialSchedule) -> None:
        loop.call_later(schedule.stimulus.wait_ms, lambda: on_stimulus(schedule))

    first = engine.start(mode)
    if first is not None:
        schedule_trial(first)
    events = loop.run_until_idle()

    if mode is RunMode.PRACTICE:
        metrics = engine.practice_metrics()
    else:
        metrics = engine.main_metrics()
    return NBackReplay(engine=engine, metrics=metrics, events=events)


def random_pvt_script(
    n: int, *, seed: int, mean_rt_ms: float = 300.0, sd_rt_ms: float = 60.0
) -> list[float | None]:
    """Synthetic responder: normally distributed RTs, never early."""

    rng = np.random.default_rng(seed)
    return [max(0.0, float(rng.normal(mean_rt_ms, sd_rt_ms))) for _ in range(n)]
