# Closed-Loop PID Autotuning for a Remote Control System
# ======================================================
#
# Searches PID gains by running scored test maneuvers on a remote plant
# over an asynchronous message link.
#
# Methods:
#   GA:       genetic algorithm
#   PSO:      particle swarm optimization
#   ZN:       relay-feedback identification + Ziegler-Nichols
#   Bayesian: surrogate model + acquisition function
#
# Fitness (lower is better): ITAE + 10 * overshoot + 5 * steady-state error

from .baseline import BaselineGuard, ParameterStore
from .bayesian import BayesianOptimizer
from .config import TuningConfig, load_config
from .fitness import FitnessWeights, fitness
from .gains import PIDGains, SearchSpace
from .genetic import GeneticAlgorithm
from .harness import TrialHarness
from .link import LinkFacade, MockLink
from .optimizer import TuningOptimizer, TuningResult
from .pso import ParticleSwarm
from .relay import RelayAutotuner
from .session import SessionState, TuningSession
from .trial import FailureReason, TrialFailure, TrialKind, TrialSuccess

__all__ = [
    'BaselineGuard',
    'ParameterStore',
    'BayesianOptimizer',
    'TuningConfig',
    'load_config',
    'FitnessWeights',
    'fitness',
    'PIDGains',
    'SearchSpace',
    'GeneticAlgorithm',
    'TrialHarness',
    'LinkFacade',
    'MockLink',
    'TuningOptimizer',
    'TuningResult',
    'ParticleSwarm',
    'RelayAutotuner',
    'SessionState',
    'TuningSession',
    'FailureReason',
    'TrialFailure',
    'TrialKind',
    'TrialSuccess',
]
