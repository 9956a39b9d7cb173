"""
Genetic Algorithm for therapy schedule optimization.

Each chromosome assigns every workflow step a therapist, a room and a time-slot
index. The population evolves through tournament selection, single-point
crossover and per-gene mutation, scored by ScheduleScorer.chromosome_fitness.
"""

import logging
import random
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

from models import Session
from .config import GAConfig
from .scoring import ScheduleScorer, evaluate_all
from .state import SchedulingContext

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict], None]


@dataclass(frozen=True)
class Gene:
    """One workflow step's allocation."""
    step_id: str
    therapist_id: str
    room_id: str
    time_slot_index: int


@dataclass
class Chromosome:
    """A candidate schedule: one gene per workflow step."""
    genes: List[Gene]
    fitness: float = 0.0

    def clone(self) -> "Chromosome":
        return Chromosome(list(self.genes), self.fitness)

    def validate(self, expected_genes: int, num_slots: int) -> "Chromosome":
        if len(self.genes) != expected_genes:
            raise ValueError(f"Chromosome has {len(self.genes)} genes, workflow has {expected_genes} steps")
        for gene in self.genes:
            if not 0 <= gene.time_slot_index < num_slots:
                raise ValueError(f"Time-slot index {gene.time_slot_index} outside [0, {num_slots - 1}]")
        return self


@dataclass
class GenerationStats:
    generation: int
    best_fitness: float
    avg_fitness: float


@dataclass
class GAResult:
    best: Chromosome
    best_fitness: float
    initial_fitness: float
    generations_run: int
    converged: bool
    cancelled: bool = False
    history: List[GenerationStats] = field(default_factory=list)


class GeneticOptimizer:
    """
    Evolves a population of chromosomes against a fixed SchedulingContext.
    """

    def __init__(
        self,
        params: Optional[GAConfig] = None,
        rng: Optional[random.Random] = None,
        workers: int = 1,
        on_progress: Optional[ProgressCallback] = None,
        should_stop: Optional[Callable[[], bool]] = None
    ):
        self.params = params or GAConfig()
        self.rng = rng or random.Random()
        self.workers = workers
        self.on_progress = on_progress
        self.should_stop = should_stop

        self.context: Optional[SchedulingContext] = None
        self.scorer: Optional[ScheduleScorer] = None
        self.population: List[Chromosome] = []
        self.best: Optional[Chromosome] = None
        self.history: List[GenerationStats] = []

    # --- Population ---

    def initialize_population(self, context: SchedulingContext) -> None:
        """Seed the population with randomised, roughly in-order schedules."""
        if not context.therapists or not context.rooms or not context.time_slots:
            raise ValueError("GA needs at least one therapist, one room and one time slot")

        self.context = context
        self.scorer = ScheduleScorer(context)
        self.history = []

        population = [self.random_chromosome() for _ in range(self.params.population_size)]
        self._score(population)
        population.sort(key=lambda c: c.fitness, reverse=True)

        self.population = population
        self.best = population[0].clone()

    def random_chromosome(self) -> Chromosome:
        ctx = self.context
        eligible = ctx.skilled_therapists() or list(ctx.therapists)
        genes = []

        for i, step in enumerate(ctx.workflow):
            therapist = self.rng.choice(eligible)
            room = self.rng.choice(ctx.rooms)

            # Sequential base (two slots per step) with +/-1 jitter for diversity
            base = i * 2
            slot_index = ctx.clamp_slot(base + self.rng.randint(-1, 1))

            genes.append(Gene(step.id, therapist.id, room.id, slot_index))

        return Chromosome(genes).validate(len(ctx.workflow), ctx.num_slots)

    def _score(self, chromosomes: List[Chromosome]) -> None:
        scores = evaluate_all(lambda c: self.scorer.chromosome_fitness(c.genes), chromosomes, self.workers)
        for chromosome, score in zip(chromosomes, scores):
            chromosome.fitness = score

    # --- Operators ---

    def tournament_select(self) -> Chromosome:
        contenders = [self.rng.choice(self.population) for _ in range(self.params.tournament_size)]
        return max(contenders, key=lambda c: c.fitness)

    def crossover(self, parent1: Chromosome, parent2: Chromosome):
        """Single-point crossover, or plain clones when the crossover roll fails."""
        if self.rng.random() > self.params.crossover_rate:
            return parent1.clone(), parent2.clone()

        point = self.rng.randrange(len(parent1.genes))
        child1 = Chromosome(parent1.genes[:point] + parent2.genes[point:])
        child2 = Chromosome(parent2.genes[:point] + parent1.genes[point:])
        return child1, child2

    def mutate(self, chromosome: Chromosome) -> Chromosome:
        """Per gene: re-roll the therapist, re-roll the room, or nudge the slot by one."""
        ctx = self.context
        genes = []
        for gene in chromosome.genes:
            if self.rng.random() < self.params.mutation_rate:
                kind = self.rng.randrange(3)
                if kind == 0:
                    gene = replace(gene, therapist_id=self.rng.choice(ctx.therapists).id)
                elif kind == 1:
                    gene = replace(gene, room_id=self.rng.choice(ctx.rooms).id)
                else:
                    shift = self.rng.choice((-1, 1))
                    gene = replace(gene, time_slot_index=ctx.clamp_slot(gene.time_slot_index + shift))
            genes.append(gene)
        return Chromosome(genes)

    # --- Main Loop ---

    def evolve_generation(self) -> GenerationStats:
        size = self.params.population_size
        elites = [c.clone() for c in self.population[:self.params.elitism_count]]

        offspring: List[Chromosome] = []
        while len(elites) + len(offspring) < size:
            child1, child2 = self.crossover(self.tournament_select(), self.tournament_select())
            offspring.append(self.mutate(child1))
            if len(elites) + len(offspring) < size:
                offspring.append(self.mutate(child2))

        self._score(offspring)

        self.population = sorted(elites + offspring, key=lambda c: c.fitness, reverse=True)
        if self.population[0].fitness > self.best.fitness:
            self.best = self.population[0].clone()

        return GenerationStats(
            generation=len(self.history),
            best_fitness=self.best.fitness,
            avg_fitness=sum(c.fitness for c in self.population) / len(self.population)
        )

    def has_converged(self) -> bool:
        window = self.params.convergence_generations
        if len(self.history) < window:
            return False
        recent = [h.best_fitness for h in self.history[-window:]]
        return max(recent) - min(recent) < self.params.convergence_threshold

    def run(self, context: SchedulingContext) -> GAResult:
        self.initialize_population(context)
        initial = self.best.fitness
        total = self.params.generations
        cancelled = False

        logger.debug(f"GA start: population={len(self.population)}, initial best={initial:.2f}")

        for gen in range(total):
            if self.should_stop and self.should_stop():
                cancelled = True
                logger.info(f"GA cancelled after {gen} generations")
                break

            stats = self.evolve_generation()
            self.history.append(stats)
            logger.debug(f"GA gen {gen}: best={stats.best_fitness:.2f} avg={stats.avg_fitness:.2f}")

            if self.on_progress:
                self.on_progress({
                    "phase": "genetic_algorithm",
                    "generation": gen,
                    "total_generations": total,
                    "best_fitness": stats.best_fitness,
                    "avg_fitness": stats.avg_fitness,
                    "progress": (gen + 1) / total * 100,
                })

            if self.has_converged():
                logger.info(f"GA converged at generation {gen}")
                break

        return GAResult(
            best=self.best.clone(),
            best_fitness=self.best.fitness,
            initial_fitness=initial,
            generations_run=len(self.history),
            converged=self.has_converged(),
            cancelled=cancelled,
            history=list(self.history)
        )

    def to_schedule(self) -> List[Session]:
        """Best chromosome as sessions, one per gene."""
        if self.best is None or self.context is None:
            return []
        ctx = self.context
        return [
            ctx.make_session(step, gene.therapist_id, gene.room_id, gene.time_slot_index,
                             session_id=f"ga_{step.id}")
            for step, gene in zip(ctx.workflow, self.best.genes)
        ]
