"""
Surrogate Models
================

Regressors mapping normalized gains (unit cube) to fitness for the
Bayesian optimizer. Any object with ``fit(X, y)`` and ``predict(X)`` works;
models that can also report predictive uncertainty expose
``predict_std(X)``.
"""

import logging
import warnings
from typing import Optional, Protocol

import numpy as np
from sklearn.gaussian_process import GaussianProcessRegressor
from sklearn.gaussian_process.kernels import ConstantKernel, Matern, WhiteKernel
from sklearn.exceptions import ConvergenceWarning
from sklearn.neural_network import MLPRegressor

logger = logging.getLogger(__name__)


class Regressor(Protocol):
    def fit(self, X: np.ndarray, y: np.ndarray) -> None: ...

    def predict(self, X: np.ndarray) -> np.ndarray: ...


class GaussianProcessSurrogate:
    """
    GP with a Matern(nu=2.5) kernel on normalized inputs.

    Targets are normalized inside the regressor; fitness values of failed
    trials (+inf) must be filtered out by the caller.
    """

    def __init__(
        self,
        length_scale: float = 0.3,
        nu: float = 2.5,
        noise_level: float = 1e-3,
        n_restarts: int = 2,
        seed: Optional[int] = None,
    ):
        kernel = (ConstantKernel(1.0, (1e-3, 1e3))
                  * Matern(length_scale=[length_scale] * 3, length_scale_bounds=(1e-2, 1e1), nu=nu)
                  + WhiteKernel(noise_level=noise_level, noise_level_bounds=(1e-6, 1e0)))
        self.model = GaussianProcessRegressor(
            kernel=kernel,
            normalize_y=True,
            n_restarts_optimizer=n_restarts,
            random_state=seed,
        )
        self.is_trained = False

    def fit(self, X: np.ndarray, y: np.ndarray) -> None:
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', ConvergenceWarning)
            self.model.fit(np.asarray(X, dtype=float), np.asarray(y, dtype=float))
        self.is_trained = True
        logger.debug("GP surrogate fitted on %d samples, kernel=%s", len(y), self.model.kernel_)

    def predict(self, X: np.ndarray) -> np.ndarray:
        return self.model.predict(np.asarray(X, dtype=float))

    def predict_std(self, X: np.ndarray) -> np.ndarray:
        _, std = self.model.predict(np.asarray(X, dtype=float), return_std=True)
        return std


class NeuralSurrogate:
    """
    Small MLP regressor (32-16 ReLU) on standardized targets.

    Gives a point prediction only.
    """

    def __init__(
        self,
        hidden_layer_sizes=(32, 16),
        learning_rate: float = 0.01,
        max_iter: int = 500,
        seed: Optional[int] = None,
    ):
        self.model = MLPRegressor(
            hidden_layer_sizes=hidden_layer_sizes,
            activation='relu',
            learning_rate_init=learning_rate,
            max_iter=max_iter,
            random_state=seed,
        )
        self.y_mean = 0.0
        self.y_std = 1.0
        self.is_trained = False

    def fit(self, X: np.ndarray, y: np.ndarray) -> None:
        y = np.asarray(y, dtype=float)
        self.y_mean = float(y.mean())
        self.y_std = float(y.std()) or 1.0
        with warnings.catch_warnings():
            # few samples: adam usually stops at max_iter
            warnings.simplefilter('ignore', ConvergenceWarning)
            self.model.fit(np.asarray(X, dtype=float), (y - self.y_mean) / self.y_std)
        self.is_trained = True

    def predict(self, X: np.ndarray) -> np.ndarray:
        return self.model.predict(np.asarray(X, dtype=float)) * self.y_std + self.y_mean


def make_surrogate(kind: str = 'gp', seed: Optional[int] = None) -> Regressor:
    """Build a surrogate by name: 'gp' or 'mlp'."""
    if kind == 'gp':
        return GaussianProcessSurrogate(seed=seed)
    if kind == 'mlp':
        return NeuralSurrogate(seed=seed)
    raise ValueError(f"Unknown surrogate model: {kind}")
