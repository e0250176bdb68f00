"""
Tuning Session Controller
=========================

Owns the lifecycle of one search and the evaluation protocol every
optimizer goes through:

    IDLE --start--> RUNNING --pause / emergency--> PAUSED --resume--> RUNNING
    RUNNING | PAUSED --stop / finish--> STOPPED --start--> RUNNING (fresh search)

The session is the only writer of remote gains outside of a trial: the
baseline is restored on every transition into PAUSED or STOPPED. A restore
requested while a trial is in flight is sent once, after that trial
resolves.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Mapping, Optional, Tuple

import numpy as np

from .baseline import BaselineGuard, ParameterStore
from .config import TuningConfig
from .errors import EmergencyInterrupt, SessionStateError, SessionStopped
from .fitness import FitnessWeights, fitness
from .gains import PIDGains
from .harness import SampleCallback, TrialHarness
from .link import LinkFacade
from .progress import (
    BaselineRestoredEvent, EvaluationEvent, ProgressEvent, ProgressSink,
    StateChangeEvent, null_sink,
)
from .trial import FailureReason, TrialKind, TrialOutcome

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    PAUSED = 'paused'
    STOPPED = 'stopped'


class TuningSession:
    """
    Session controller for one gain loop.

    Args:
        harness: test harness used for every trial
        guard: baseline safety guard for the tuned loop
        sink: progress sink receiving all events
        weights: fitness weights
        poll_interval: seconds between checks while paused
    """

    def __init__(
        self,
        harness: TrialHarness,
        guard: BaselineGuard,
        sink: Optional[ProgressSink] = None,
        weights: Optional[FitnessWeights] = None,
        poll_interval: float = 0.1,
    ):
        self.harness = harness
        self.guard = guard
        self.sink = sink or null_sink
        self.weights = weights or FitnessWeights()
        self.poll_interval = poll_interval

        self.state = SessionState.IDLE
        self.method = ''
        self.baseline: Optional[PIDGains] = None
        self.evaluations = 0

        self._trial_in_flight = False
        self._restore_pending = False

    @classmethod
    def create(
        cls,
        link: LinkFacade,
        config: Optional[TuningConfig] = None,
        store: Optional[ParameterStore] = None,
        sink: Optional[ProgressSink] = None,
    ) -> 'TuningSession':
        """Wire harness, parameter store and guard for one link."""
        config = config or TuningConfig()
        store = store or ParameterStore(link)
        harness = TrialHarness(link, config.harness, seed=config.seed)
        guard = BaselineGuard(link, store, loop=config.session.loop)
        return cls(
            harness, guard, sink=sink,
            weights=config.fitness,
            poll_interval=config.session.poll_interval,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.state in (SessionState.RUNNING, SessionState.PAUSED)

    def start(self, method: str = '') -> PIDGains:
        """Capture the baseline and begin a fresh search."""
        if self.is_active:
            raise SessionStateError(f"Session already {self.state.value}")
        self.method = method
        self.evaluations = 0
        self._restore_pending = False
        self.baseline = self.guard.capture()
        self._set_state(SessionState.RUNNING, 'start')
        return self.baseline

    def pause(self, reason: str = 'user') -> None:
        if self.state is SessionState.PAUSED:
            return
        if self.state is not SessionState.RUNNING:
            raise SessionStateError(f"Cannot pause a session that is {self.state.value}")
        self._set_state(SessionState.PAUSED, reason)
        self._restore_baseline(reason)

    def resume(self) -> None:
        if self.state is SessionState.RUNNING:
            return
        if self.state is not SessionState.PAUSED:
            raise SessionStateError(f"Cannot resume a session that is {self.state.value}")
        self._set_state(SessionState.RUNNING, 'resume')

    def stop(self, reason: str = 'user') -> None:
        """Stop cooperatively; the loop exits at its next suspension point."""
        if not self.is_active:
            return
        if self._trial_in_flight:
            self.harness.cancel()
        self._set_state(SessionState.STOPPED, reason)
        self._restore_baseline(reason)

    def finish(self) -> None:
        """Mark a search that ended by itself (budget exhausted or failed)."""
        if self.is_active:
            self._set_state(SessionState.STOPPED, 'finished')
            self._restore_baseline('finished')

    async def wait_until_running(self) -> None:
        """
        Suspension point before every trial.

        Raises:
            SessionStopped: once the session has been stopped
        """
        while self.state is SessionState.PAUSED:
            await asyncio.sleep(self.poll_interval)
        if self.state is SessionState.STOPPED:
            raise SessionStopped()
        if self.state is SessionState.IDLE:
            raise SessionStateError("Session has not been started")

    # ------------------------------------------------------------------
    # Evaluation contract
    # ------------------------------------------------------------------

    async def evaluate(self, gains: PIDGains) -> Tuple[float, TrialOutcome]:
        """
        Score one candidate on the plant.

        An emergency interrupt pauses the session and the same candidate is
        retried after resume; only the retried outcome is scored. Any other
        failure scores +inf.
        """
        while True:
            outcome = await self._run_trial(TrialKind.METRICS, gains.as_dict())
            self.evaluations += 1
            try:
                value = fitness(outcome, self.weights)
            except EmergencyInterrupt:
                self._emit(EvaluationEvent(self.method, self.evaluations, gains, np.inf, outcome))
                self._on_emergency()
                continue
            self._emit(EvaluationEvent(self.method, self.evaluations, gains, value, outcome))
            return value, outcome

    async def run_relay(
        self,
        amplitude: float,
        on_sample: SampleCallback,
        on_retry: Optional[Callable[[], None]] = None,
        timeout_ms: Optional[int] = None,
    ) -> TrialOutcome:
        """Run one relay test, retrying it after an emergency interrupt."""
        while True:
            outcome = await self._run_trial(
                TrialKind.RELAY, {'amplitude': amplitude},
                on_sample=on_sample, timeout_ms=timeout_ms,
            )
            self.evaluations += 1
            if not outcome.ok and outcome.reason is FailureReason.EMERGENCY_INTERRUPT:
                self._on_emergency()
                if on_retry is not None:
                    on_retry()
                continue
            return outcome

    async def _run_trial(
        self,
        kind: TrialKind,
        params: Mapping[str, float],
        on_sample: Optional[SampleCallback] = None,
        timeout_ms: Optional[int] = None,
    ) -> TrialOutcome:
        await self.wait_until_running()
        self._trial_in_flight = True
        try:
            outcome = await self.harness.run_trial(kind, params, on_sample=on_sample, timeout_ms=timeout_ms)
        finally:
            self._trial_in_flight = False
        if self._restore_pending:
            # pause or stop arrived while the trial was running
            if self.state is SessionState.RUNNING:
                self._restore_pending = False
            else:
                self._restore_baseline(self.state.value)
        if self.state is SessionState.STOPPED:
            # outcome of a cancelled trial is not scored
            raise SessionStopped()
        return outcome

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_emergency(self) -> None:
        logger.warning("Emergency stop during trial, pausing session until resume")
        # already paused or stopped by the user: that transition restored
        if self.state is SessionState.RUNNING:
            self._set_state(SessionState.PAUSED, FailureReason.EMERGENCY_INTERRUPT.value)
            self._restore_baseline(FailureReason.EMERGENCY_INTERRUPT.value)

    def _restore_baseline(self, reason: str) -> None:
        if self.guard.baseline is None:
            return
        if self._trial_in_flight:
            self._restore_pending = True
            return
        self._restore_pending = False
        gains = self.guard.restore()
        self._emit(BaselineRestoredEvent(gains=gains, reason=reason))

    def _set_state(self, new: SessionState, reason: str = '') -> None:
        old = self.state
        self.state = new
        logger.info("Session %s -> %s (%s)", old.value, new.value, reason)
        self._emit(StateChangeEvent(old=old.value, new=new.value, reason=reason))

    def _emit(self, event: ProgressEvent) -> None:
        self.sink(event)
