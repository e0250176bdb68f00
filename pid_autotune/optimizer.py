"""
Optimizer Base
==============

Common driver for the four tuning methods. Subclasses implement
``reset()`` and ``search()``; the base class owns the session lifecycle,
best-so-far tracking and the single termination report.

All candidates are produced as ``[kp, ki, kd]`` arrays and clipped to the
search space before evaluation. Unless the search space searches ``ki``,
the integral gain is held at the session baseline.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from .errors import SessionStopped
from .fitness import is_scored
from .gains import PIDGains, SearchSpace
from .progress import IterationEvent, TerminationEvent
from .session import TuningSession

logger = logging.getLogger(__name__)


@dataclass
class TuningResult:
    """Outcome of one tuning run."""
    method: str
    best_gains: Optional[PIDGains]
    best_fitness: float
    termination: str  # completed, stopped, failed
    evaluations: int = 0
    iterations: int = 0
    error: Optional[str] = None
    history: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.termination == 'completed' and self.best_gains is not None


class TuningOptimizer(ABC):
    """
    Base class for session-driven gain optimizers.

    Args:
        session: session controller the optimizer evaluates through
        search_space: gain bounds (defaults to the balance loop bounds)
        seed: random seed for reproducibility
    """

    name = 'base'

    def __init__(
        self,
        session: TuningSession,
        search_space: Optional[SearchSpace] = None,
        seed: Optional[int] = None,
    ):
        self.session = session
        self.search_space = search_space or SearchSpace()
        self.rng = np.random.default_rng(seed)

        self.best_genes: Optional[np.ndarray] = None
        self.best_fitness = np.inf
        self.iteration = 0
        # method-specific traces attached to the result
        self.history: Dict[str, Any] = {}

    @property
    @abstractmethod
    def total_iterations(self) -> int:
        """Configured number of generations / iterations."""

    @abstractmethod
    def reset(self) -> None:
        """Prepare a fresh search; called after the baseline is captured."""

    @abstractmethod
    async def search(self) -> None:
        """Run the search to its natural end."""

    @property
    def best_gains(self) -> Optional[PIDGains]:
        if self.best_genes is None:
            return None
        return PIDGains.from_array(self.best_genes)

    # ------------------------------------------------------------------
    # Run / control
    # ------------------------------------------------------------------

    async def run(self) -> TuningResult:
        """
        Start the session, search, and always leave the plant on baseline.

        Returns:
            TuningResult with termination 'completed', 'stopped' or 'failed'
        """
        self.session.start(self.name)
        self.best_genes = None
        self.best_fitness = np.inf
        self.iteration = 0

        termination = 'completed'
        error = None
        try:
            self.reset()
            await self.search()
        except SessionStopped:
            termination = 'stopped'
            logger.info("%s stopped after %d iterations", self.name, self.iteration)
        except Exception as exc:
            termination = 'failed'
            error = f"{type(exc).__name__}: {exc}"
            logger.exception("%s failed", self.name)
        finally:
            self.session.finish()

        result = TuningResult(
            method=self.name,
            best_gains=self.best_gains,
            best_fitness=float(self.best_fitness),
            termination=termination,
            evaluations=self.session.evaluations,
            iterations=self.iteration,
            error=error,
            history=self.history,
        )
        self.session.sink(TerminationEvent(
            method=self.name,
            reason=termination,
            best_gains=result.best_gains,
            best_fitness=result.best_fitness,
            error=error,
        ))
        return result

    def pause(self) -> None:
        self.session.pause()

    def resume(self) -> None:
        self.session.resume()

    def stop(self) -> None:
        self.session.stop()

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    @property
    def fixed_ki(self) -> Optional[float]:
        if self.search_space.search_ki or self.session.baseline is None:
            return None
        space = self.search_space
        return float(np.clip(self.session.baseline.ki, space.ki_min, space.ki_max))

    def sample_genes(self) -> np.ndarray:
        return self.search_space.sample(self.rng, fixed_ki=self.fixed_ki)

    def clip(self, genes: np.ndarray) -> np.ndarray:
        clipped = self.search_space.clip(np.asarray(genes, dtype=float))
        if self.fixed_ki is not None:
            clipped[1] = self.fixed_ki
        return clipped

    async def evaluate(self, genes: np.ndarray) -> float:
        value, _ = await self.session.evaluate(PIDGains.from_array(genes))
        return value

    def update_best(self, genes: np.ndarray, value: float) -> bool:
        """Keep the first-found candidate on ties."""
        if is_scored(value) and value < self.best_fitness:
            self.best_fitness = float(value)
            self.best_genes = np.array(genes, dtype=float)
            return True
        return False

    def report_iteration(self) -> None:
        self.session.sink(IterationEvent(
            method=self.name,
            iteration=self.iteration,
            total=self.total_iterations,
            best_gains=self.best_gains,
            best_fitness=float(self.best_fitness),
        ))
