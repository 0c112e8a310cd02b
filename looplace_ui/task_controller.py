from __future__ import annotations

from collections.abc import Callable

from PySide6.QtCore import QObject, QTimer, Signal, Slot

from looplace.nback import NBackEngine, TrialSchedule
from looplace.pvt import PvtEngine, StepKind, StepOutcome
from looplace.storage import QualityFlags, StorageError, SummaryStore
from looplace.timing import Clock, MonotonicClock
from looplace.types import TASK_NBACK, TASK_PVT, RunMode, ScheduleRequest

# (wait_ms, callback) -> None. Defaults to a Qt single-shot timer.
Scheduler = Callable[[int, Callable[[], None]], None]


def qt_scheduler(wait_ms: int, callback: Callable[[], None]) -> None:
    QTimer.singleShot(int(wait_ms), callback)


class _TaskControllerBase(QObject):
    failed = Signal(str)  # storage error text
    saved = Signal(object)  # SummaryRecord

    def __init__(
        self,
        *,
        store: SummaryStore | None,
        clock: Clock | None,
        scheduler: Scheduler | None,
    ) -> None:
        super().__init__()
        self._store = store
        self._clock: Clock = clock or MonotonicClock()
        self._schedule_later: Scheduler = scheduler or qt_scheduler
        self._focus_lost = 0
        self._blur = 0

    @Slot()
    def note_focus_lost(self) -> None:
        self._focus_lost += 1

    @Slot()
    def note_window_blur(self) -> None:
        self._blur += 1

    def _reset_qc(self) -> None:
        self._focus_lost = 0
        self._blur = 0

    def _persist(self, task: str, metrics: object, *, min_trials_met: bool) -> None:
        if self._store is None:
            return
        qc = QualityFlags(
            focus_lost_events=self._focus_lost,
            visibility_blur_events=self._blur,
            min_trials_met=min_trials_met,
        )
        try:
            record = self._store.save(task, metrics, qc=qc)  # type: ignore[arg-type]
        except StorageError as e:
            # The metrics record stays with the caller via `completed`.
            self.failed.emit(str(e))
            return
        self.saved.emit(record)


class PvtTaskController(_TaskControllerBase):
    """Owns one PVT engine and turns its schedule requests into Qt timers."""

    started = Signal(int)  # run_id
    stimulus_shown = Signal(int)  # trial_index
    trial_retired = Signal(int, str)  # (trial_index, outcome kind)
    completed = Signal(object)  # PvtMetrics
    aborted = Signal(int)  # run_id

    def __init__(
        self,
        engine: PvtEngine | None = None,
        *,
        store: SummaryStore | None = None,
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        super().__init__(store=store, clock=clock, scheduler=scheduler)
        self.engine = engine or PvtEngine(clock=self._clock)

    @Slot()
    def start(self) -> bool:
        req = self.engine.start()
        if req is None:
            return False
        self._reset_qc()
        self.started.emit(self.engine.run_id)
        self._arm_stimulus(req)
        return True

    @Slot()
    def respond(self) -> None:
        idx = self.engine.state.trial_index
        self._handle_step(idx, self.engine.register_response(self._clock.now()))

    @Slot()
    def abort(self) -> None:
        self.engine.abort()
        self.aborted.emit(self.engine.run_id)

    def _arm_stimulus(self, req: ScheduleRequest) -> None:
        self._schedule_later(req.wait_ms, lambda: self._on_stimulus(req))

    def _on_stimulus(self, req: ScheduleRequest) -> None:
        timeout = self.engine.mark_stimulus_on(
            req.trial_index, self._clock.now(), run_id=req.run_id
        )
        if timeout is None:
            return
        self.stimulus_shown.emit(req.trial_index)
        self._schedule_later(timeout.wait_ms, lambda: self._on_timeout(timeout))

    def _on_timeout(self, req: ScheduleRequest) -> None:
        outcome = self.engine.register_timeout(req.trial_index, run_id=req.run_id)
        self._handle_step(req.trial_index, outcome)

    def _handle_step(self, trial_index: int | None, outcome: StepOutcome) -> None:
        if outcome.ignored or trial_index is None:
            return
        trial = self.engine.trials[trial_index]
        self.trial_retired.emit(trial_index, trial.outcome.kind.value)

        if outcome.kind is StepKind.RUN_COMPLETED:
            metrics = self.engine.metrics()
            self.completed.emit(metrics)
            if metrics is not None:
                self._persist(
                    TASK_PVT,
                    metrics,
                    min_trials_met=metrics.meets_min_trial_requirement,
                )
        elif outcome.request is not None:
            self._arm_stimulus(outcome.request)


class NBackTaskController(_TaskControllerBase):
    """Owns one 2-back engine; only main-run summaries are persisted."""

    started = Signal(int, str)  # (run_id, mode)
    stimulus_shown = Signal(int, str)  # (trial_index, letter)
    stimulus_hidden = Signal(int)  # trial_index
    response_recorded = Signal(int, str)  # (trial_index, response kind)
    completed = Signal(str, object)  # (mode, NBackMetrics)
    aborted = Signal(int)  # run_id

    def __init__(
        self,
        engine: NBackEngine | None = None,
        *,
        store: SummaryStore | None = None,
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        super().__init__(store=store, clock=clock, scheduler=scheduler)
        self.engine = engine or NBackEngine(clock=self._clock)

    def start(self, mode: RunMode = RunMode.MAIN) -> bool:
        schedule = self.engine.start(mode)
        if schedule is None:
            return False
        self._reset_qc()
        self.started.emit(self.engine.run_id, mode.value)
        self._arm_trial(schedule)
        return True

    @Slot()
    def respond(self) -> None:
        idx = self.engine.state.trial_index
        outcome = self.engine.register_response(self._clock.now())
        if outcome.kind is not None and idx is not None:
            self.response_recorded.emit(idx, outcome.kind.value)

    @Slot()
    def abort(self) -> None:
        self.engine.abort()
        self.aborted.emit(self.engine.run_id)

    def _arm_trial(self, schedule: TrialSchedule) -> None:
        self._schedule_later(
            schedule.stimulus.wait_ms, lambda: self._on_stimulus(schedule)
        )

    def _on_stimulus(self, schedule: TrialSchedule) -> None:
        stim = schedule.stimulus
        if not self.engine.mark_stimulus_on(
            stim.trial_index, self._clock.now(), run_id=stim.run_id
        ):
            return
        letter = self.engine.trials[stim.trial_index].letter
        self.stimulus_shown.emit(stim.trial_index, letter)
        self._schedule_later(
            self.engine.config.stimulus_ms,
            lambda: self._on_stimulus_hidden(stim),
        )
        adv = schedule.advance
        self._schedule_later(adv.wait_ms, lambda: self._on_advance(adv))

    def _on_stimulus_hidden(self, stim: ScheduleRequest) -> None:
        # Display-only; the response window stays open.
        if stim.run_id == self.engine.run_id:
            self.stimulus_hidden.emit(stim.trial_index)

    def _on_advance(self, adv: ScheduleRequest) -> None:
        outcome = self.engine.advance(adv.trial_index, run_id=adv.run_id)
        if outcome.ignored:
            return
        if outcome.schedule is not None:
            self._arm_trial(outcome.schedule)
            return

        mode = outcome.mode or RunMode.MAIN
        if mode is RunMode.PRACTICE:
            self.completed.emit(mode.value, self.engine.practice_metrics())
            return
        metrics = self.engine.main_metrics()
        self.completed.emit(mode.value, metrics)
        if metrics is not None:
            self._persist(TASK_NBACK, metrics, min_trials_met=True)
