"""
PID Gains and Search Space
==========================

Gains are handled as ``[kp, ki, kd]`` numpy arrays inside the optimizers and
as :class:`PIDGains` at the boundaries (trial requests, results, events).
"""

import numpy as np
from dataclasses import dataclass
from typing import Dict, Optional, Tuple


GAIN_NAMES = ('kp', 'ki', 'kd')

# Remote parameter keys per control loop
LOOP_PARAM_KEYS: Dict[str, Tuple[str, str, str]] = {
    'balance': ('kp_b', 'ki_b', 'kd_b'),
    'speed': ('kp_s', 'ki_s', 'kd_s'),
    'position': ('kp_p', 'ki_p', 'kd_p'),
}


@dataclass
class PIDGains:
    """PID controller gains."""
    kp: float = 0.0
    ki: float = 0.0
    kd: float = 0.0

    def to_array(self) -> np.ndarray:
        return np.array([self.kp, self.ki, self.kd], dtype=float)

    @classmethod
    def from_array(cls, arr: np.ndarray) -> 'PIDGains':
        return cls(kp=float(arr[0]), ki=float(arr[1]), kd=float(arr[2]))

    def as_dict(self) -> Dict[str, float]:
        return {'kp': self.kp, 'ki': self.ki, 'kd': self.kd}

    def __repr__(self):
        return f"PIDGains(kp={self.kp:.4f}, ki={self.ki:.4f}, kd={self.kd:.4f})"


@dataclass
class SearchSpace:
    """
    Per-gain search bounds.

    ``search_ki`` selects whether the integral gain is searched at all; when
    it is not, optimizers hold ``ki`` at the session's baseline value.
    """
    kp_min: float = 0.1
    kp_max: float = 50.0
    ki_min: float = 0.0
    ki_max: float = 10.0
    kd_min: float = 0.0
    kd_max: float = 5.0
    search_ki: bool = False

    def __post_init__(self):
        for name in GAIN_NAMES:
            lo = getattr(self, f'{name}_min')
            hi = getattr(self, f'{name}_max')
            if lo > hi:
                raise ValueError(f"{name}_min ({lo}) must not exceed {name}_max ({hi})")

    @classmethod
    def for_loop(cls, loop: str, search_ki: bool = False) -> 'SearchSpace':
        """Default bounds for one of the remote control loops."""
        if loop not in _LOOP_BOUNDS:
            raise ValueError(f"Unknown control loop: {loop}")
        kp, ki, kd = _LOOP_BOUNDS[loop]
        return cls(
            kp_min=kp[0], kp_max=kp[1],
            ki_min=ki[0], ki_max=ki[1],
            kd_min=kd[0], kd_max=kd[1],
            search_ki=search_ki,
        )

    @property
    def lower(self) -> np.ndarray:
        return np.array([self.kp_min, self.ki_min, self.kd_min], dtype=float)

    @property
    def upper(self) -> np.ndarray:
        return np.array([self.kp_max, self.ki_max, self.kd_max], dtype=float)

    @property
    def span(self) -> np.ndarray:
        return self.upper - self.lower

    def clip(self, genes: np.ndarray) -> np.ndarray:
        return np.clip(genes, self.lower, self.upper)

    def contains(self, genes: np.ndarray) -> bool:
        genes = np.asarray(genes, dtype=float)
        return bool(np.all(genes >= self.lower) and np.all(genes <= self.upper))

    def sample(self, rng: np.random.Generator, fixed_ki: Optional[float] = None) -> np.ndarray:
        """Draw one uniformly random gain vector."""
        genes = self.lower + rng.random(3) * self.span
        if fixed_ki is not None:
            genes[1] = fixed_ki
        return genes


# (kp, ki, kd) bounds per loop
_LOOP_BOUNDS = {
    'balance': ((0.1, 50.0), (0.0, 10.0), (0.0, 5.0)),
    'speed': ((0.01, 5.0), (0.0, 2.0), (0.0, 1.0)),
    'position': ((0.1, 20.0), (0.0, 5.0), (0.0, 2.0)),
}


def ziegler_nichols_gains(ku: float, tu: float) -> PIDGains:
    """
    Classic Ziegler-Nichols PID rule from the ultimate gain and period.

        kp = 0.6 Ku,  ki = 1.2 Ku / Tu,  kd = 0.075 Ku Tu
    """
    if tu <= 0:
        raise ValueError(f"Ultimate period must be positive, got {tu}")
    return PIDGains(kp=0.6 * ku, ki=1.2 * ku / tu, kd=0.075 * ku * tu)
