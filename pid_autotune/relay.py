"""
Relay-Feedback Identification (Ziegler-Nichols)
===============================================

Drives the plant with a bang-bang relay of amplitude ``d`` and watches the
resulting limit cycle of the measured angle. From the last ``min_cycles``
peaks and valleys:

    a  = (mean(peaks) - mean(valleys)) / 2
    Ku = 4 d / (pi a)
    Tu = mean peak-to-peak period

and the classic Z-N rule turns (Ku, Tu) into PID gains.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from .config import RelayConfig
from .errors import IdentificationError
from .gains import PIDGains, SearchSpace, ziegler_nichols_gains
from .optimizer import TuningOptimizer
from .progress import EvaluationEvent, RelayCycleEvent
from .session import TuningSession
from .trial import RelaySample

logger = logging.getLogger(__name__)

Extremum = Tuple[float, float]  # (time, angle)


class OscillationDetector:
    """
    Streaming peak/valley detector.

    A sample is a peak when it is above both neighbours and more than
    ``debounce`` time units after the previous peak; valleys mirror this.
    """

    def __init__(self, debounce: float = 0.1):
        self.debounce = debounce
        self.samples: List[RelaySample] = []
        self.peaks: List[Extremum] = []
        self.valleys: List[Extremum] = []

    def reset(self) -> None:
        self.samples = []
        self.peaks = []
        self.valleys = []

    @property
    def cycles(self) -> int:
        return min(len(self.peaks), len(self.valleys))

    def has_cycles(self, n: int) -> bool:
        return len(self.peaks) >= n and len(self.valleys) >= n

    def add(self, sample: RelaySample) -> None:
        self.samples.append(sample)
        if len(self.samples) < 3:
            return
        before, mid, after = self.samples[-3:]

        if mid.angle > before.angle and mid.angle > after.angle:
            if not self.peaks or mid.time - self.peaks[-1][0] > self.debounce:
                self.peaks.append((mid.time, mid.angle))

        if mid.angle < before.angle and mid.angle < after.angle:
            if not self.valleys or mid.time - self.valleys[-1][0] > self.debounce:
                self.valleys.append((mid.time, mid.angle))


@dataclass
class RelayIdentification:
    """Ultimate gain/period estimate and the derived gains."""
    ku: float
    tu: float
    oscillation_amplitude: float
    gains: PIDGains
    peaks: List[Extremum] = field(default_factory=list)
    valleys: List[Extremum] = field(default_factory=list)


def identify_ultimate(
    peaks: List[Extremum],
    valleys: List[Extremum],
    relay_amplitude: float,
    min_cycles: int = 3,
) -> RelayIdentification:
    """
    Estimate (Ku, Tu) from recorded extrema.

    Raises:
        IdentificationError: too few extrema or a degenerate oscillation
    """
    if len(peaks) < min_cycles or len(valleys) < min_cycles:
        raise IdentificationError(
            f"Not enough oscillation cycles detected ({min(len(peaks), len(valleys))}/{min_cycles})")

    peak_values = np.array([v for _, v in peaks[-min_cycles:]])
    valley_values = np.array([v for _, v in valleys[-min_cycles:]])
    amplitude = (peak_values.mean() - valley_values.mean()) / 2.0
    if amplitude <= 0:
        raise IdentificationError(f"Degenerate oscillation amplitude {amplitude:.4g}")

    # at least two peaks are needed for one period
    peak_times = np.array([t for t, _ in peaks[-max(min_cycles, 2):]])
    if len(peak_times) < 2:
        raise IdentificationError("Need at least two peaks to measure the period")
    tu = float(np.mean(np.diff(peak_times)))
    if tu <= 0:
        raise IdentificationError(f"Non-positive oscillation period {tu:.4g}")

    ku = 4.0 * relay_amplitude / (np.pi * amplitude)
    return RelayIdentification(
        ku=float(ku),
        tu=tu,
        oscillation_amplitude=float(amplitude),
        gains=ziegler_nichols_gains(ku, tu),
        peaks=list(peaks),
        valleys=list(valleys),
    )


class RelayAutotuner(TuningOptimizer):
    """
    One relay experiment followed by the Z-N mapping.

    The trial ends early, as a success, as soon as ``min_cycles`` peaks and
    valleys have been seen; on timeout the recorded extrema are used if
    there are enough of them.
    """

    name = 'ZN'

    def __init__(
        self,
        session: TuningSession,
        search_space: Optional[SearchSpace] = None,
        config: Optional[RelayConfig] = None,
        seed: Optional[int] = None,
    ):
        super().__init__(session, search_space, seed)
        self.config = config or RelayConfig()
        self.detector = OscillationDetector(self.config.debounce)
        self.identification: Optional[RelayIdentification] = None

    @property
    def total_iterations(self) -> int:
        return 1

    def reset(self) -> None:
        self.detector.reset()
        self.identification = None
        self.history = {}

    def _on_sample(self, sample: RelaySample) -> bool:
        seen = (len(self.detector.peaks), len(self.detector.valleys))
        self.detector.add(sample)
        if (len(self.detector.peaks), len(self.detector.valleys)) != seen:
            self.session.sink(RelayCycleEvent(
                peaks=len(self.detector.peaks),
                valleys=len(self.detector.valleys),
                min_cycles=self.config.min_cycles,
            ))
        return self.detector.has_cycles(self.config.min_cycles)

    async def search(self) -> None:
        logger.info("Relay test: amplitude=%.3f, waiting for %d cycles",
                    self.config.amplitude, self.config.min_cycles)
        outcome = await self.session.run_relay(
            self.config.amplitude,
            on_sample=self._on_sample,
            on_retry=self.detector.reset,
            timeout_ms=self.config.timeout_ms,
        )

        if not self.detector.has_cycles(self.config.min_cycles) and not outcome.ok:
            raise IdentificationError(
                f"Relay test failed ({outcome.reason.value}) after "
                f"{self.detector.cycles} of {self.config.min_cycles} cycles")

        ident = identify_ultimate(
            self.detector.peaks, self.detector.valleys,
            self.config.amplitude, self.config.min_cycles,
        )
        self.identification = ident
        self.history = {
            'ku': ident.ku,
            'tu': ident.tu,
            'oscillation_amplitude': ident.oscillation_amplitude,
            'peaks': ident.peaks,
            'valleys': ident.valleys,
            'samples': [(s.time, s.angle, s.relay_output) for s in self.detector.samples],
        }
        logger.info("Relay identification: Ku=%.4f, Tu=%.4f s -> %s", ident.ku, ident.tu, ident.gains)

        # Relay gains are not scored on the plant
        self.best_genes = ident.gains.to_array()
        self.best_fitness = 0.0
        self.session.sink(EvaluationEvent(self.name, self.session.evaluations, ident.gains, 0.0, outcome))
        self.iteration = 1
        self.report_iteration()

