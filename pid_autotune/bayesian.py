"""
Bayesian Optimization
=====================

Surrogate-guided search for PID gains:

1. ``initial_samples`` uniformly random trials (optionally plus the baseline)
2. per iteration: maximize the acquisition over a ``grid_size^3`` grid of the
   search space through the surrogate, evaluate the winner on the plant,
   retrain on every successfully scored sample

Acquisition functions (fitness is minimized, ``best`` is the lowest seen):

    ei  = max(0, best - mu + xi)
    ucb = -mu + kappa * sigma
    pi  = Phi((best - mu - xi) / sigma)
"""

import itertools
import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from scipy.stats import norm

from .config import BayesianConfig
from .fitness import is_scored
from .gains import SearchSpace
from .optimizer import TuningOptimizer
from .progress import SurrogateEvent
from .session import TuningSession
from .surrogate import Regressor, make_surrogate

logger = logging.getLogger(__name__)


@dataclass
class Sample:
    """One observed (gains, fitness) pair."""
    genes: np.ndarray  # [Kp, Ki, Kd]
    fitness: float = np.inf
    source: str = 'random'  # random, baseline, acquisition


def expected_improvement(mu: np.ndarray, best: float, xi: float = 0.01) -> np.ndarray:
    return np.maximum(0.0, best - mu + xi)


def upper_confidence_bound(mu: np.ndarray, sigma: Optional[np.ndarray] = None,
                           kappa: float = 2.0) -> np.ndarray:
    if sigma is None:
        sigma = np.ones_like(mu)
    return -mu + kappa * sigma


def probability_of_improvement(mu: np.ndarray, best: float, xi: float = 0.01,
                               sigma: Optional[np.ndarray] = None) -> np.ndarray:
    """Without an uncertainty estimate this degrades to the indicator best - mu > 0."""
    if sigma is None:
        return (best - mu > 0).astype(float)
    sigma = np.maximum(sigma, 1e-12)
    return norm.cdf((best - mu - xi) / sigma)


class BayesianOptimizer(TuningOptimizer):
    """
    Bayesian optimizer over a coarse candidate grid.

    Args:
        session: session controller
        search_space: gain bounds
        config: Bayesian settings
        surrogate: regressor to use instead of ``config.surrogate``
        seed: random seed
    """

    name = 'Bayesian'

    def __init__(
        self,
        session: TuningSession,
        search_space: Optional[SearchSpace] = None,
        config: Optional[BayesianConfig] = None,
        surrogate: Optional[Regressor] = None,
        seed: Optional[int] = None,
    ):
        super().__init__(session, search_space, seed)
        self.config = config or BayesianConfig()
        self._custom_surrogate = surrogate
        self._seed = seed
        self.surrogate: Optional[Regressor] = None
        self.surrogate_trained = False
        self.samples: List[Sample] = []

    @property
    def total_iterations(self) -> int:
        return self.config.iterations

    def reset(self) -> None:
        self.samples = []
        self.surrogate = self._custom_surrogate or make_surrogate(self.config.surrogate, self._seed)
        self.surrogate_trained = False
        self.history = {
            'samples': [],
            'fitness': [],
            'sources': [],
            'best_fitness': [],
        }

    async def search(self) -> None:
        # Initial design
        if self.config.include_baseline and self.session.baseline is not None:
            await self.observe(self.session.baseline.to_array(), 'baseline')
        for _ in range(self.config.initial_samples):
            await self.observe(self.sample_genes(), 'random')
        self.train_surrogate()

        while self.iteration < self.config.iterations:
            genes = self.propose()
            await self.observe(genes, 'acquisition')
            self.train_surrogate()

            self.iteration += 1
            self.history['best_fitness'].append(self.best_fitness)
            self.report_iteration()

    async def observe(self, genes: np.ndarray, source: str) -> Sample:
        sample = Sample(genes=np.array(genes, dtype=float), source=source)
        sample.fitness = await self.evaluate(sample.genes)
        self.samples.append(sample)
        self.update_best(sample.genes, sample.fitness)

        self.history['samples'].append(sample.genes)
        self.history['fitness'].append(sample.fitness)
        self.history['sources'].append(source)
        return sample

    # ------------------------------------------------------------------
    # Surrogate
    # ------------------------------------------------------------------

    def normalize(self, genes: np.ndarray) -> np.ndarray:
        span = self.search_space.span
        span = np.where(span > 0, span, 1.0)
        return (np.asarray(genes, dtype=float) - self.search_space.lower) / span

    def valid_samples(self) -> List[Sample]:
        return [s for s in self.samples if is_scored(s.fitness)]

    def train_surrogate(self) -> bool:
        """Refit on all scored samples; needs at least two of them."""
        valid = self.valid_samples()
        if len(valid) >= 2:
            X = self.normalize(np.array([s.genes for s in valid]))
            y = np.array([s.fitness for s in valid])
            self.surrogate.fit(X, y)
            self.surrogate_trained = True
            trained = True
        else:
            logger.debug("Surrogate not retrained: %d valid samples", len(valid))
            trained = False
        self.session.sink(SurrogateEvent(
            n_samples=len(self.samples), n_valid=len(valid), trained=trained))
        return trained

    def candidate_grid(self) -> np.ndarray:
        """All grid points; a fixed ki collapses its axis to one value."""
        n = self.config.grid_size
        lower, upper = self.search_space.lower, self.search_space.upper
        axes = [np.linspace(lower[i], upper[i], n) for i in range(3)]
        if self.fixed_ki is not None:
            axes[1] = np.array([self.fixed_ki])
        return np.array(list(itertools.product(*axes)), dtype=float)

    def acquisition(self, candidates: np.ndarray) -> np.ndarray:
        X = self.normalize(candidates)
        mu = np.asarray(self.surrogate.predict(X), dtype=float)
        sigma = None
        if hasattr(self.surrogate, 'predict_std'):
            sigma = np.asarray(self.surrogate.predict_std(X), dtype=float)

        best = min(s.fitness for s in self.valid_samples())
        kind = self.config.acquisition
        if kind == 'ei':
            return expected_improvement(mu, best, self.config.xi)
        if kind == 'ucb':
            return upper_confidence_bound(mu, sigma, self.config.kappa)
        return probability_of_improvement(mu, best, self.config.xi, sigma)

    def propose(self) -> np.ndarray:
        """Next candidate: acquisition argmax, or random while untrained."""
        if not self.surrogate_trained:
            return self.sample_genes()
        candidates = self.candidate_grid()
        scores = self.acquisition(candidates)
        # first maximum wins ties
        return self.clip(candidates[int(np.argmax(scores))])
