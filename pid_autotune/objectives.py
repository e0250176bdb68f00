"""
Step-Response Metrics
=====================

Metrics the remote firmware reports for a metrics test, computed here for
the simulated device:

    ITAE = integral of t |e(t)| dt
    overshoot = 100 * (max(y) - r) / r   (percent, 0 if never exceeded)
    steady-state error = |mean e| over the final tail of the response
"""

import numpy as np


def compute_itae(time: np.ndarray, error: np.ndarray) -> float:
    """
    Integral of Time-weighted Absolute Error.

    Args:
        time: Time array
        error: Error array (same length as time)

    Returns:
        ITAE value (lower is better)
    """
    if len(time) < 2:
        return 0.0
    return float(np.trapezoid(time * np.abs(error), time))


def compute_overshoot(response: np.ndarray, setpoint: float) -> float:
    """Percentage overshoot past a positive or negative setpoint."""
    if setpoint == 0:
        return 0.0
    peak = np.max(response) if setpoint > 0 else np.min(response)
    excess = (peak - setpoint) / setpoint
    return float(100.0 * excess) if excess > 0 else 0.0


def compute_steady_state_error(error: np.ndarray, tail_fraction: float = 0.1) -> float:
    """Mean absolute error over the last ``tail_fraction`` of the samples."""
    if len(error) == 0:
        return 0.0
    n_tail = max(1, int(len(error) * tail_fraction))
    return float(abs(np.mean(error[-n_tail:])))


def compute_settling_time(time: np.ndarray, response: np.ndarray, setpoint: float,
                          tolerance: float = 0.02) -> float:
    """Time after which the response stays inside the tolerance band (inf if never)."""
    if len(time) < 2:
        return np.inf
    band = tolerance * abs(setpoint) if setpoint != 0 else tolerance
    outside = np.nonzero(np.abs(response - setpoint) > band)[0]
    if len(outside) == 0:
        return 0.0
    last = outside[-1]
    if last == len(time) - 1:
        return np.inf
    return float(time[last + 1])


def summarize_response(time: np.ndarray, response: np.ndarray, setpoint: float) -> dict:
    """The metrics payload of a ``metrics_result`` event."""
    error = setpoint - response
    return {
        'itae': compute_itae(time, error),
        'overshoot': compute_overshoot(response, setpoint),
        'steady_state_error': compute_steady_state_error(error),
        'settling_time': compute_settling_time(time, response, setpoint),
    }
