"""
Trial Fitness
=============

Scalarizes one trial outcome (lower is better):

    J = ITAE + 10 * overshoot + 5 * steady_state_error

Failed trials score +inf, except emergency interrupts, which are not a
score at all and are raised so the session can suspend.
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional

from .errors import EmergencyInterrupt
from .trial import FailureReason, TrialOutcome, TrialSuccess


@dataclass
class FitnessWeights:
    """Weights for scalarizing the trial metrics into a single objective."""
    w_itae: float = 1.0
    w_overshoot: float = 10.0
    w_steady_state: float = 5.0


def fitness(outcome: TrialOutcome, weights: Optional[FitnessWeights] = None) -> float:
    """
    Map a trial outcome to one scalar fitness.

    Raises:
        EmergencyInterrupt: if the trial was aborted by a safety stop
    """
    weights = weights or FitnessWeights()
    if isinstance(outcome, TrialSuccess):
        return (weights.w_itae * outcome.itae
                + weights.w_overshoot * outcome.overshoot
                + weights.w_steady_state * outcome.steady_state_error)

    if outcome.reason is FailureReason.EMERGENCY_INTERRUPT:
        raise EmergencyInterrupt(outcome)
    return np.inf


def is_scored(value: float) -> bool:
    return bool(np.isfinite(value))
