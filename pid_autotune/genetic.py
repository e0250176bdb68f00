"""
Genetic Algorithm
=================

Single-objective GA for PID gains evaluated on the live plant.

Features:
- Uniform random initialization inside the search space
- Tournament selection over successfully scored individuals
- Blend (arithmetic) crossover
- Per-gene uniform mutation of up to +/- mutation_scale of the gene range
- Elitism: the generation's best survives unchanged
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .config import GAConfig
from .fitness import is_scored
from .gains import SearchSpace
from .optimizer import TuningOptimizer
from .session import TuningSession

logger = logging.getLogger(__name__)


@dataclass
class Individual:
    """An individual in the population."""
    genes: np.ndarray  # [Kp, Ki, Kd]
    fitness: float = np.inf
    evaluated: bool = False

    def copy(self) -> 'Individual':
        return Individual(genes=self.genes.copy(), fitness=self.fitness, evaluated=self.evaluated)


class GeneticAlgorithm(TuningOptimizer):
    """
    GA optimizer minimizing trial fitness.

    Individuals that fail their trial score +inf and never take part in
    selection.
    """

    name = 'GA'

    def __init__(
        self,
        session: TuningSession,
        search_space: Optional[SearchSpace] = None,
        config: Optional[GAConfig] = None,
        seed: Optional[int] = None,
    ):
        super().__init__(session, search_space, seed)
        self.config = config or GAConfig()
        self.population: List[Individual] = []

        self.history = {
            'generations': [],
            'best_fitness': [],
            'mean_fitness': [],
        }

    @property
    def total_iterations(self) -> int:
        return self.config.generations

    def reset(self) -> None:
        self.population = [Individual(genes=self.sample_genes())
                           for _ in range(self.config.population_size)]
        for key in self.history:
            self.history[key] = []

    async def search(self) -> None:
        while self.iteration < self.config.generations:
            await self.evaluate_population()
            self.population.sort(key=lambda ind: ind.fitness)
            self.update_best(self.population[0].genes, self.population[0].fitness)

            self.iteration += 1
            self._record_generation()
            self.report_iteration()

            if self.iteration < self.config.generations:
                self.population = self.create_offspring(self.population)

    async def evaluate_population(self) -> None:
        """Evaluate every individual not yet scored, in population order."""
        for individual in self.population:
            if individual.evaluated:
                continue
            individual.fitness = await self.evaluate(individual.genes)
            individual.evaluated = True

    def tournament_selection(self, candidates: List[Individual]) -> Optional[Individual]:
        """Lowest fitness among ``tournament_size`` draws with replacement."""
        if not candidates:
            return None
        best = None
        for idx in self.rng.integers(0, len(candidates), size=self.config.tournament_size):
            contender = candidates[idx]
            if best is None or contender.fitness < best.fitness:
                best = contender
        return best

    def crossover(self, parent1: np.ndarray, parent2: np.ndarray) -> np.ndarray:
        """Blend crossover: alpha * p1 + (1 - alpha) * p2, alpha ~ U[0, 1)."""
        alpha = self.rng.random()
        return self.clip(alpha * parent1 + (1.0 - alpha) * parent2)

    def mutate(self, genes: np.ndarray) -> np.ndarray:
        mask = self.rng.random(3) < self.config.mutation_rate
        delta = self.rng.uniform(-1.0, 1.0, size=3) * self.config.mutation_scale * self.search_space.span
        return self.clip(genes + mask * delta)

    def create_offspring(self, population: List[Individual]) -> List[Individual]:
        """Build the next generation from a population sorted by fitness."""
        offspring: List[Individual] = []
        if self.config.elitism and is_scored(population[0].fitness):
            offspring.append(population[0].copy())

        scored = [ind for ind in population if is_scored(ind.fitness)]
        while len(offspring) < self.config.population_size:
            # Selection
            parent1 = self.tournament_selection(scored)
            parent2 = self.tournament_selection(scored)

            # Crossover
            if parent1 is None:
                genes = self.sample_genes()
            elif self.rng.random() < self.config.crossover_rate:
                genes = self.crossover(parent1.genes, parent2.genes)
            else:
                genes = parent1.genes.copy()

            # Mutation
            offspring.append(Individual(genes=self.mutate(genes)))

        return offspring

    def _record_generation(self) -> None:
        scored = [ind.fitness for ind in self.population if is_scored(ind.fitness)]
        self.history['generations'].append(self.iteration)
        self.history['best_fitness'].append(self.best_fitness)
        self.history['mean_fitness'].append(float(np.mean(scored)) if scored else np.inf)
        logger.debug("Generation %d/%d: best=%.4f, %d/%d scored", self.iteration,
                     self.config.generations, self.best_fitness, len(scored), len(self.population))
