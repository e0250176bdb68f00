"""
Progress Events and Sinks
=========================

The engine reports discrete events to a caller-supplied sink; a sink is
any callable taking one event. Presentation is entirely the sink's concern.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union

from .gains import PIDGains
from .trial import TrialOutcome

logger = logging.getLogger(__name__)


@dataclass
class EvaluationEvent:
    """One candidate evaluated against the plant (successful or not)."""
    method: str
    index: int
    gains: PIDGains
    fitness: float
    outcome: Optional[TrialOutcome] = None

    @property
    def failed(self) -> bool:
        return self.outcome is not None and not self.outcome.ok


@dataclass
class IterationEvent:
    """End of one generation / iteration."""
    method: str
    iteration: int
    total: int
    best_gains: Optional[PIDGains]
    best_fitness: float


@dataclass
class StateChangeEvent:
    old: str
    new: str
    reason: str = ''


@dataclass
class BaselineRestoredEvent:
    gains: PIDGains
    reason: str = ''


@dataclass
class RelayCycleEvent:
    peaks: int
    valleys: int
    min_cycles: int


@dataclass
class SurrogateEvent:
    """Surrogate model refreshed (or left stale) after a Bayesian step."""
    n_samples: int
    n_valid: int
    trained: bool


@dataclass
class TerminationEvent:
    method: str
    reason: str  # completed, stopped, failed
    best_gains: Optional[PIDGains]
    best_fitness: float
    error: Optional[str] = None


ProgressEvent = Union[
    EvaluationEvent, IterationEvent, StateChangeEvent, BaselineRestoredEvent,
    RelayCycleEvent, SurrogateEvent, TerminationEvent,
]
ProgressSink = Callable[[ProgressEvent], None]


def null_sink(event: ProgressEvent) -> None:
    pass


class LoggingSink:
    """Writes every event to a logger."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def __call__(self, event: ProgressEvent) -> None:
        if isinstance(event, EvaluationEvent):
            if event.failed:
                self.log.warning("[%s] #%d %s failed: %s", event.method, event.index,
                                 event.gains, event.outcome.reason.value)
            else:
                self.log.info("[%s] #%d %s fitness=%.4f", event.method, event.index,
                              event.gains, event.fitness)
        elif isinstance(event, IterationEvent):
            self.log.info("[%s] %d/%d best=%s", event.method, event.iteration, event.total,
                          _fmt(event.best_fitness))
        elif isinstance(event, TerminationEvent):
            if event.error:
                self.log.error("[%s] %s: %s", event.method, event.reason, event.error)
            else:
                self.log.info("[%s] %s, best %s fitness=%s", event.method, event.reason,
                              event.best_gains, _fmt(event.best_fitness))
        else:
            self.log.info("%s", event)


class HistorySink:
    """
    Records all events plus a compact history for plotting.

    history keys: 'iterations', 'best_fitness', 'evaluations', 'fitness', 'gains'
    """

    def __init__(self):
        self.events: List[ProgressEvent] = []
        self.history: Dict[str, list] = {
            'iterations': [],
            'best_fitness': [],
            'evaluations': [],
            'fitness': [],
            'gains': [],
        }

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)
        if isinstance(event, IterationEvent):
            self.history['iterations'].append(event.iteration)
            self.history['best_fitness'].append(event.best_fitness)
        elif isinstance(event, EvaluationEvent):
            self.history['evaluations'].append(event.index)
            self.history['fitness'].append(event.fitness)
            self.history['gains'].append(event.gains.to_array())

    def of_type(self, event_type) -> list:
        return [e for e in self.events if isinstance(e, event_type)]


@dataclass
class FanoutSink:
    sinks: List[ProgressSink] = field(default_factory=list)

    def __call__(self, event: ProgressEvent) -> None:
        for sink in self.sinks:
            sink(event)


def _fmt(value: float) -> str:
    return f"{value:.4f}" if math.isfinite(value) else "inf"
