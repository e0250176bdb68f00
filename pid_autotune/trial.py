"""
Trial Requests and Outcomes
===========================

One trial is one scored maneuver on the remote system: either a metrics
test (step response with the given gains) or a relay test (bang-bang
excitation streaming the measured angle).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Tuple, Union


class TrialKind(str, Enum):
    METRICS = 'metrics'
    RELAY = 'relay'

    @property
    def command(self) -> str:
        return 'run_metrics_test' if self is TrialKind.METRICS else 'run_relay_test'


class FailureReason(str, Enum):
    NACK = 'nack'
    TIMEOUT = 'timeout'
    REMOTE_FAILED = 'remote_failed'
    EMERGENCY_INTERRUPT = 'emergency_interrupt'


@dataclass(frozen=True)
class RelaySample:
    """One ``relay_state`` reading."""
    time: float
    angle: float
    relay_output: float = 0.0


@dataclass
class TrialRequest:
    test_id: int
    kind: TrialKind
    params: Dict[str, float]
    timeout_ms: int

    def to_message(self) -> dict:
        message = {'type': self.kind.command, 'testId': self.test_id}
        message.update(self.params)
        return message


@dataclass
class TrialSuccess:
    test_id: int
    itae: float = 0.0
    overshoot: float = 0.0
    steady_state_error: float = 0.0
    has_metrics: bool = True
    samples: Tuple[RelaySample, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return True


@dataclass
class TrialFailure:
    test_id: int
    reason: FailureReason
    message: str = ''
    samples: Tuple[RelaySample, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return False


TrialOutcome = Union[TrialSuccess, TrialFailure]
