"""
Tuning Configuration
====================

One typed configuration tree for a tuning session. Every section is a
dataclass with the defaults used by the remote-tuning panel; a YAML file
may override any subset of fields:

    harness:
      trial_duration_ms: 4000
    ga:
      population_size: 12
    search_space:
      search_ki: true
"""

from copy import deepcopy
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .fitness import FitnessWeights
from .gains import SearchSpace

# Deadline of a relay test; the trial normally ends early once enough cycles are seen
RELAY_TIMEOUT_MS = 30000


@dataclass
class HarnessConfig:
    """Trial deadline and result handling for the test harness."""
    trial_duration_ms: int = 5000
    deadline_margin_ms: int = 1500
    min_timeout_ms: int = 3000
    max_timeout_ms: int = 15000
    # "zero" or "penalize": how a completion without a metrics payload scores
    missing_metrics: str = 'zero'

    def __post_init__(self):
        if self.missing_metrics not in ('zero', 'penalize'):
            raise ValueError(f"missing_metrics must be 'zero' or 'penalize', got {self.missing_metrics!r}")
        if self.min_timeout_ms > self.max_timeout_ms:
            raise ValueError("min_timeout_ms must not exceed max_timeout_ms")

    def metrics_timeout_ms(self) -> int:
        deadline = self.trial_duration_ms + self.deadline_margin_ms
        return int(min(max(deadline, self.min_timeout_ms), self.max_timeout_ms))


@dataclass
class SessionConfig:
    loop: str = 'balance'
    poll_interval: float = 0.1


@dataclass
class GAConfig:
    population_size: int = 20
    generations: int = 30
    crossover_rate: float = 0.7
    mutation_rate: float = 0.1
    mutation_scale: float = 0.1  # max perturbation as a fraction of the gene range
    tournament_size: int = 3
    elitism: bool = True


@dataclass
class PSOConfig:
    num_particles: int = 20
    iterations: int = 30
    inertia_weight: float = 0.7
    cognitive_weight: float = 1.5
    social_weight: float = 1.5
    velocity_clamp: float = 0.2  # fraction of the gene range


@dataclass
class RelayConfig:
    amplitude: float = 2.0
    min_cycles: int = 3
    debounce: float = 0.1
    timeout_ms: int = RELAY_TIMEOUT_MS

    def __post_init__(self):
        # the period is measured between peaks, so one cycle never identifies
        if self.min_cycles < 2:
            raise ValueError(f"min_cycles must be at least 2, got {self.min_cycles}")
        if self.amplitude <= 0:
            raise ValueError(f"Relay amplitude must be positive, got {self.amplitude}")


@dataclass
class BayesianConfig:
    iterations: int = 25
    initial_samples: int = 5
    acquisition: str = 'ei'  # ei, ucb, pi
    xi: float = 0.01
    kappa: float = 2.0
    grid_size: int = 8
    include_baseline: bool = False
    surrogate: str = 'gp'  # gp, mlp

    def __post_init__(self):
        if self.acquisition not in ('ei', 'ucb', 'pi'):
            raise ValueError(f"Unknown acquisition function: {self.acquisition}")
        if self.surrogate not in ('gp', 'mlp'):
            raise ValueError(f"Unknown surrogate model: {self.surrogate}")
        if self.grid_size < 2:
            raise ValueError("grid_size must be at least 2")


@dataclass
class TuningConfig:
    """Complete configuration for one tuning session."""
    harness: HarnessConfig = field(default_factory=HarnessConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    fitness: FitnessWeights = field(default_factory=FitnessWeights)
    ga: GAConfig = field(default_factory=GAConfig)
    pso: PSOConfig = field(default_factory=PSOConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    bayes: BayesianConfig = field(default_factory=BayesianConfig)
    search_space: Optional[SearchSpace] = None
    seed: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TuningConfig':
        sections = {
            'harness': HarnessConfig,
            'session': SessionConfig,
            'fitness': FitnessWeights,
            'ga': GAConfig,
            'pso': PSOConfig,
            'relay': RelayConfig,
            'bayes': BayesianConfig,
            'search_space': SearchSpace,
        }
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key == 'seed':
                kwargs['seed'] = None if value is None else int(value)
            elif key in sections:
                kwargs[key] = _build_section(sections[key], value or {})
            else:
                raise ValueError(f"Unknown configuration section: {key}")
        return cls(**kwargs)

    def resolved_search_space(self) -> SearchSpace:
        return self.search_space or SearchSpace.for_loop(self.session.loop)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _build_section(section_cls, values: Dict[str, Any]):
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown keys for {section_cls.__name__}: {sorted(unknown)}")
    return section_cls(**values)


def deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = deepcopy(a)
    for k, v in b.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = deepcopy(v)
    return out


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(path: Optional[Union[str, Path]] = None,
                overrides: Optional[Dict[str, Any]] = None) -> TuningConfig:
    """Build a :class:`TuningConfig` from an optional YAML file plus overrides."""
    data: Dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config not found: {path}")
        data = load_yaml(path)
    if overrides:
        data = deep_merge(data, overrides)
    return TuningConfig.from_dict(data)
