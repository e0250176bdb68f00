"""
Test Harness
============

Runs one scored trial on the remote system and correlates the reply.

Each trial gets a fresh test id and a future in the correlation map. The
harness listens on the link and resolves the future from, in priority order:

1. a negative ``ack`` for the trial                  -> Failure(nack)
2. ``test_complete`` with ``success=false``           -> Failure(remote_failed)
                                                        or Failure(emergency_interrupt)
3. ``test_complete`` with ``success=true``            -> Success(metrics of the
                                                        preceding result event)
4. the deadline                                       -> Failure(timeout)

Events for any other test id are stale and ignored. The harness never
retries; that is a policy of the caller.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional

import numpy as np

from .config import RELAY_TIMEOUT_MS, HarnessConfig
from .errors import TrialInProgressError
from .link import LinkFacade
from .trial import (
    FailureReason, RelaySample, TrialFailure, TrialKind, TrialOutcome,
    TrialRequest, TrialSuccess,
)

logger = logging.getLogger(__name__)

# Completion reasons reported by the firmware when a safety stop aborted the test
EMERGENCY_REASONS = frozenset({
    'emergency', 'emergency_stop', 'interrupted_by_emergency', 'emergency_interrupt',
})

# ITAE reported when a completion arrives without metrics and the policy is "penalize"
PENALTY_ITAE = 9999.0

SampleCallback = Callable[[RelaySample], bool]


@dataclass
class _PendingTrial:
    request: TrialRequest
    future: asyncio.Future
    metrics: Optional[dict] = None
    samples: List[RelaySample] = field(default_factory=list)
    on_sample: Optional[SampleCallback] = None


def test_id_key(value) -> str:
    """Firmware may echo the id as an int, a float or a string."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def same_test_id(a, b) -> bool:
    if a is None or b is None:
        return False
    return test_id_key(a) == test_id_key(b)


class TrialHarness:
    """
    Issues trials through a link and awaits their correlated outcome.

    Exactly one trial may be outstanding at a time.
    """

    def __init__(
        self,
        link: LinkFacade,
        config: Optional[HarnessConfig] = None,
        seed: Optional[int] = None,
    ):
        self.link = link
        self.config = config or HarnessConfig()
        self.rng = np.random.default_rng(seed)

        self._counter = 0
        self._pending: Dict[str, _PendingTrial] = {}
        self.link.add_listener(self._on_event)

    @property
    def in_flight(self) -> bool:
        return bool(self._pending)

    def close(self) -> None:
        self.link.remove_listener(self._on_event)

    def next_test_id(self) -> int:
        """Monotonic counter followed by a 4-digit random salt."""
        self._counter += 1
        salt = int(self.rng.integers(0, 10_000))
        return self._counter * 10_000 + salt

    def timeout_ms(self, kind: TrialKind) -> int:
        if TrialKind(kind) is TrialKind.RELAY:
            return RELAY_TIMEOUT_MS
        return self.config.metrics_timeout_ms()

    async def run_trial(
        self,
        kind: TrialKind,
        params: Mapping[str, float],
        on_sample: Optional[SampleCallback] = None,
        timeout_ms: Optional[int] = None,
    ) -> TrialOutcome:
        """
        Send one trial command and wait for its outcome.

        Args:
            kind: metrics test or relay test
            params: ``{kp, ki, kd}`` for metrics tests, ``{amplitude}`` for relay tests
            on_sample: relay tests only; called per ``relay_state`` sample,
                returning True ends the trial early as a success
            timeout_ms: overrides the default deadline (clamped metrics
                deadline, or ``RELAY_TIMEOUT_MS`` for relay tests)

        Returns:
            TrialSuccess or TrialFailure
        """
        if self._pending:
            raise TrialInProgressError("A trial is already in flight")

        kind = TrialKind(kind)
        loop = asyncio.get_running_loop()
        request = TrialRequest(
            test_id=self.next_test_id(),
            kind=kind,
            params={k: float(v) for k, v in params.items()},
            timeout_ms=int(timeout_ms if timeout_ms is not None else self.timeout_ms(kind)),
        )
        pending = _PendingTrial(request=request, future=loop.create_future(), on_sample=on_sample)
        key = test_id_key(request.test_id)
        self._pending[key] = pending

        logger.debug("Trial %s (%s) sent: %s", request.test_id, request.kind.value, request.params)
        try:
            self.link.send(request.to_message())
            return await asyncio.wait_for(pending.future, request.timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            logger.warning("Trial %s timed out after %d ms", request.test_id, request.timeout_ms)
            return TrialFailure(
                test_id=request.test_id,
                reason=FailureReason.TIMEOUT,
                message=f"no completion within {request.timeout_ms} ms",
                samples=tuple(pending.samples),
            )
        finally:
            self._pending.pop(key, None)

    def cancel(self) -> None:
        """Ask the remote system to abort the running test."""
        self.link.send({'type': 'cancel_test'})

    # ------------------------------------------------------------------
    # Event correlation
    # ------------------------------------------------------------------

    def _on_event(self, event: dict) -> None:
        if not self._pending:
            return
        event_type = event.get('type')

        if event_type == 'ack':
            self._on_ack(event)
            return

        pending = self._pending.get(test_id_key(event.get('testId')))
        if pending is None or pending.future.done():
            return

        if event_type in ('metrics_result', 'test_result'):
            pending.metrics = event
        elif event_type == 'relay_state':
            self._on_relay_state(pending, event)
        elif event_type == 'status_update':
            logger.debug("Trial %s status: %s", pending.request.test_id, event.get('message'))
        elif event_type == 'test_complete':
            self._on_complete(pending, event)

    def _on_ack(self, event: dict) -> None:
        if event.get('success', True):
            return
        test_id = event.get('testId')
        for pending in self._pending.values():
            if pending.future.done():
                continue
            if test_id is not None:
                matches = same_test_id(test_id, pending.request.test_id)
            else:
                matches = event.get('command') == pending.request.kind.command
            if matches:
                message = event.get('message') or 'rejected'
                logger.warning("Trial %s rejected: %s", pending.request.test_id, message)
                self._resolve(pending, TrialFailure(
                    test_id=pending.request.test_id,
                    reason=FailureReason.NACK,
                    message=message,
                    samples=tuple(pending.samples),
                ))

    def _on_relay_state(self, pending: _PendingTrial, event: dict) -> None:
        try:
            sample = RelaySample(
                time=float(event.get('time', 0.0)),
                angle=float(event.get('angle', 0.0)),
                relay_output=float(event.get('relay_output', 0.0)),
            )
        except (TypeError, ValueError) as exc:
            logger.warning("Trial %s: dropping malformed relay sample %r (%s)",
                           pending.request.test_id, event, exc)
            return
        pending.samples.append(sample)
        if pending.on_sample is not None and pending.on_sample(sample):
            self._resolve(pending, TrialSuccess(
                test_id=pending.request.test_id,
                has_metrics=False,
                samples=tuple(pending.samples),
            ))
            self.cancel()

    def _on_complete(self, pending: _PendingTrial, event: dict) -> None:
        test_id = pending.request.test_id
        if not event.get('success', False):
            reason_text = str(event.get('reason') or '')
            if reason_text.lower() in EMERGENCY_REASONS:
                reason = FailureReason.EMERGENCY_INTERRUPT
            else:
                reason = FailureReason.REMOTE_FAILED
            logger.warning("Trial %s failed on the remote side: %s", test_id, reason_text or reason.value)
            self._resolve(pending, TrialFailure(
                test_id=test_id,
                reason=reason,
                message=reason_text,
                samples=tuple(pending.samples),
            ))
            return

        metrics = pending.metrics
        if metrics is None:
            # Completion without a result payload still counts as success
            penalize = self.config.missing_metrics == 'penalize'
            logger.warning("Trial %s completed without metrics (%s)", test_id,
                           'penalized' if penalize else 'scored as zero')
            outcome = TrialSuccess(
                test_id=test_id,
                itae=PENALTY_ITAE if penalize else 0.0,
                has_metrics=False,
                samples=tuple(pending.samples),
            )
        else:
            try:
                outcome = TrialSuccess(
                    test_id=test_id,
                    itae=float(metrics.get('itae') or 0.0),
                    overshoot=float(metrics.get('overshoot') or 0.0),
                    steady_state_error=float(metrics.get('steady_state_error') or 0.0),
                    samples=tuple(pending.samples),
                )
            except (TypeError, ValueError) as exc:
                logger.warning("Trial %s reported malformed metrics: %s", test_id, exc)
                outcome = TrialFailure(
                    test_id=test_id,
                    reason=FailureReason.REMOTE_FAILED,
                    message=f"malformed metrics: {exc}",
                    samples=tuple(pending.samples),
                )
        self._resolve(pending, outcome)

    @staticmethod
    def _resolve(pending: _PendingTrial, outcome: TrialOutcome) -> None:
        if not pending.future.done():
            pending.future.set_result(outcome)
