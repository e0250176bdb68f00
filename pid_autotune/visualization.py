"""
Visualization Module
====================

Report figures for a finished tuning run:
- Convergence of the best fitness per iteration
- Fitness of every evaluated candidate
- Kp-Kd map of evaluated candidates coloured by fitness
- Relay oscillation with detected peaks and valleys
- Step responses of baseline vs tuned gains
"""

from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np

from .gains import PIDGains


plt.rcParams.update({
    'font.size': 11,
    'axes.labelsize': 12,
    'axes.titlesize': 13,
    'legend.fontsize': 10,
    'figure.dpi': 100,
    'savefig.bbox': 'tight',
    'axes.grid': True,
    'grid.alpha': 0.3,
})


class TuningVisualizer:
    """Writes tuning report figures into ``output_dir``."""

    def __init__(self, output_dir: str = "figures", dpi: int = 150):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.dpi = dpi

        self.colors = {
            'best': '#2ecc71',      # Green
            'trial': '#3498db',     # Blue
            'failed': '#e74c3c',    # Red
            'baseline': '#95a5a6',  # Gray
            'relay': '#9b59b6',     # Purple
        }

    def _save(self, fig: plt.Figure, save_name: str) -> Path:
        path = self.output_dir / save_name
        fig.savefig(path, dpi=self.dpi, facecolor='white')
        return path

    def plot_convergence(
        self,
        history: dict,
        method: str = '',
        save_name: str = "convergence.png",
    ) -> plt.Figure:
        """Best-so-far fitness per generation / iteration (HistorySink history)."""
        fig, ax = plt.subplots(figsize=(8, 5))

        iterations = history['iterations']
        best = np.asarray(history['best_fitness'], dtype=float)
        finite = np.isfinite(best)
        if finite.any():
            ax.plot(np.asarray(iterations)[finite], best[finite],
                    color=self.colors['best'], linewidth=2, marker='o', markersize=4)
        ax.set_xlabel('Iteration')
        ax.set_ylabel('Best fitness')
        ax.set_title(f'{method} Convergence'.strip())

        self._save(fig, save_name)
        return fig

    def plot_fitness_scatter(
        self,
        history: dict,
        save_name: str = "trial_fitness.png",
    ) -> plt.Figure:
        """Fitness of every evaluation; failed trials are marked on the top edge."""
        fig, ax = plt.subplots(figsize=(10, 5))

        index = np.asarray(history['evaluations'])
        fitness = np.asarray(history['fitness'], dtype=float)
        ok = np.isfinite(fitness)

        ax.scatter(index[ok], fitness[ok], c=self.colors['trial'], s=20, alpha=0.7,
                   label='Scored')
        if (~ok).any():
            top = fitness[ok].max() if ok.any() else 1.0
            ax.scatter(index[~ok], np.full((~ok).sum(), top), c=self.colors['failed'],
                       marker='x', s=40, label='Failed')
        if ok.any():
            ax.plot(index[ok], np.minimum.accumulate(fitness[ok]),
                    color=self.colors['best'], linewidth=2, label='Best so far')
        ax.set_xlabel('Evaluation')
        ax.set_ylabel('Fitness (lower is better)')
        ax.set_title('Trial Fitness')
        ax.legend()

        self._save(fig, save_name)
        return fig

    def plot_gain_map(
        self,
        history: dict,
        best: Optional[PIDGains] = None,
        baseline: Optional[PIDGains] = None,
        save_name: str = "gain_map.png",
    ) -> plt.Figure:
        """Evaluated candidates in the Kp-Kd plane, coloured by log fitness."""
        fig, ax = plt.subplots(figsize=(8, 6))

        gains = np.array(history['gains']).reshape(-1, 3)
        fitness = np.asarray(history['fitness'], dtype=float)
        ok = np.isfinite(fitness)

        if ok.any():
            scatter = ax.scatter(gains[ok, 0], gains[ok, 2], c=np.log10(fitness[ok] + 1e-9),
                                 cmap='viridis', s=40, alpha=0.8, edgecolors='white')
            plt.colorbar(scatter, ax=ax, label='log10 fitness')
        if (~ok).any():
            ax.scatter(gains[~ok, 0], gains[~ok, 2], c=self.colors['failed'], marker='x',
                       s=40, label='Failed')
        if baseline is not None:
            ax.scatter(baseline.kp, baseline.kd, c=self.colors['baseline'], marker='s', s=120,
                       edgecolors='black', label='Baseline', zorder=5)
        if best is not None:
            ax.scatter(best.kp, best.kd, c=self.colors['best'], marker='*', s=300,
                       edgecolors='black', linewidth=1.5, label='Best', zorder=6)

        ax.set_xlabel(r'$K_p$')
        ax.set_ylabel(r'$K_d$')
        ax.set_title(r'Evaluated Gains ($K_p$ vs $K_d$)')
        if ax.get_legend_handles_labels()[0]:
            ax.legend()

        self._save(fig, save_name)
        return fig

    def plot_relay_oscillation(
        self,
        samples: Sequence[Tuple[float, float, float]],
        peaks: Sequence[Tuple[float, float]] = (),
        valleys: Sequence[Tuple[float, float]] = (),
        ku: Optional[float] = None,
        tu: Optional[float] = None,
        save_name: str = "relay_oscillation.png",
    ) -> plt.Figure:
        """Measured angle and relay output of a relay test."""
        fig, (ax_angle, ax_relay) = plt.subplots(2, 1, figsize=(10, 6), sharex=True,
                                                 gridspec_kw={'height_ratios': [3, 1]})
        data = np.array(samples, dtype=float).reshape(-1, 3)

        ax_angle.plot(data[:, 0], data[:, 1], color=self.colors['relay'], linewidth=1.5)
        if len(peaks):
            p = np.array(peaks)
            ax_angle.scatter(p[:, 0], p[:, 1], c=self.colors['failed'], marker='^', s=50,
                             label='Peaks', zorder=5)
        if len(valleys):
            v = np.array(valleys)
            ax_angle.scatter(v[:, 0], v[:, 1], c=self.colors['trial'], marker='v', s=50,
                             label='Valleys', zorder=5)
        title = 'Relay Oscillation'
        if ku is not None and tu is not None:
            title += rf' ($K_u$={ku:.3f}, $T_u$={tu:.3f} s)'
        ax_angle.set_title(title)
        ax_angle.set_ylabel('Angle')
        if len(peaks) or len(valleys):
            ax_angle.legend()

        ax_relay.step(data[:, 0], data[:, 2], where='post', color=self.colors['baseline'])
        ax_relay.set_xlabel('Time (s)')
        ax_relay.set_ylabel('Relay')

        plt.tight_layout()
        self._save(fig, save_name)
        return fig

    def plot_step_responses(
        self,
        responses: Dict[str, Tuple[np.ndarray, np.ndarray]],
        setpoint: float = 1.0,
        save_name: str = "step_response.png",
    ) -> plt.Figure:
        """Overlay step responses, e.g. {'Baseline': (t, y), 'Tuned': (t, y)}."""
        fig, ax = plt.subplots(figsize=(10, 5))
        palette = [self.colors['baseline'], self.colors['best'], self.colors['trial'],
                   self.colors['relay']]

        for (label, (time, response)), color in zip(responses.items(), palette):
            ax.plot(time, response, label=label, color=color, linewidth=2)
        ax.axhline(setpoint, color='black', linestyle='--', linewidth=1, label='Setpoint')
        ax.set_xlabel('Time (s)')
        ax.set_ylabel('Angle')
        ax.set_title('Closed-Loop Step Response')
        ax.legend()

        self._save(fig, save_name)
        return fig
