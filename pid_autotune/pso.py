"""
Particle Swarm Optimization
===========================

Global-best PSO over ``[kp, ki, kd]``:

    v' = w*v + c1*r1*(pbest - x) + c2*r2*(gbest - x)
    x' = clip(x + v')

``r1`` and ``r2`` are drawn per gene on every update and the velocity is
clamped to +/- velocity_clamp of each gene's range.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .config import PSOConfig
from .gains import SearchSpace
from .optimizer import TuningOptimizer
from .session import TuningSession

logger = logging.getLogger(__name__)


@dataclass
class Particle:
    position: np.ndarray
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    best_position: Optional[np.ndarray] = None
    best_fitness: float = np.inf
    fitness: float = np.inf

    def __post_init__(self):
        if self.best_position is None:
            self.best_position = self.position.copy()


class ParticleSwarm(TuningOptimizer):
    """PSO optimizer minimizing trial fitness."""

    name = 'PSO'

    def __init__(
        self,
        session: TuningSession,
        search_space: Optional[SearchSpace] = None,
        config: Optional[PSOConfig] = None,
        seed: Optional[int] = None,
    ):
        super().__init__(session, search_space, seed)
        self.config = config or PSOConfig()
        self.particles: List[Particle] = []

        self.history = {
            'iterations': [],
            'best_fitness': [],
            'positions': [],
        }

    @property
    def total_iterations(self) -> int:
        return self.config.iterations

    @property
    def max_velocity(self) -> np.ndarray:
        return self.config.velocity_clamp * self.search_space.span

    def reset(self) -> None:
        self.particles = []
        for _ in range(self.config.num_particles):
            self.particles.append(Particle(position=self.sample_genes()))
        for key in self.history:
            self.history[key] = []

    async def search(self) -> None:
        while self.iteration < self.config.iterations:
            await self.evaluate_swarm()
            if self.best_genes is not None:
                for particle in self.particles:
                    self.update_particle(particle)

            self.iteration += 1
            self.history['iterations'].append(self.iteration)
            self.history['best_fitness'].append(self.best_fitness)
            self.history['positions'].append(np.array([p.position for p in self.particles]))
            self.report_iteration()

    async def evaluate_swarm(self) -> None:
        for particle in self.particles:
            particle.fitness = await self.evaluate(particle.position)
            if particle.fitness < particle.best_fitness:
                particle.best_fitness = particle.fitness
                particle.best_position = particle.position.copy()
            self.update_best(particle.position, particle.fitness)

    def update_particle(self, particle: Particle) -> None:
        """Velocity and position update toward personal and global best."""
        w = self.config.inertia_weight
        c1 = self.config.cognitive_weight
        c2 = self.config.social_weight

        r1 = self.rng.random(3)
        r2 = self.rng.random(3)
        velocity = (w * particle.velocity
                    + c1 * r1 * (particle.best_position - particle.position)
                    + c2 * r2 * (self.best_genes - particle.position))

        v_max = self.max_velocity
        particle.velocity = np.clip(velocity, -v_max, v_max)
        particle.position = self.clip(particle.position + particle.velocity)
