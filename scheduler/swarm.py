"""
Particle Swarm Optimization for schedule refinement.

Takes the sessions produced by the genetic optimizer and searches over their
time-slot indices only (therapist and room stay fixed), to remove residual
double-bookings and tighten the timeline.
"""

import logging
import math
import random
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from models import Session
from .config import PSOConfig
from .scoring import ScheduleScorer, evaluate_all
from .state import SchedulingContext

logger = logging.getLogger(__name__)


@dataclass
class Particle:
    """One candidate vector of time-slot indices, one dimension per session."""
    position: List[int]
    velocity: List[float]
    fitness: float = 0.0
    best_position: List[int] = field(default_factory=list)
    best_fitness: float = -math.inf

    def __post_init__(self):
        if len(self.velocity) != len(self.position):
            raise ValueError("Velocity and position must have the same number of dimensions")
        if not self.best_position:
            self.best_position = list(self.position)

    def update_personal_best(self) -> None:
        if self.fitness > self.best_fitness:
            self.best_fitness = self.fitness
            self.best_position = list(self.position)


@dataclass
class IterationStats:
    iteration: int
    global_best_fitness: float
    avg_fitness: float


@dataclass
class PSOResult:
    global_best: List[int]
    global_best_fitness: float
    initial_fitness: float
    iterations_run: int
    converged: bool
    cancelled: bool = False
    history: List[IterationStats] = field(default_factory=list)


class SwarmRefiner:
    """
    Synchronous PSO: every particle moves, the swarm is scored, then the bests are updated.
    """

    def __init__(
        self,
        params: Optional[PSOConfig] = None,
        rng: Optional[random.Random] = None,
        workers: int = 1,
        on_progress: Optional[Callable[[Dict], None]] = None,
        should_stop: Optional[Callable[[], bool]] = None
    ):
        self.params = params or PSOConfig()
        self.rng = rng or random.Random()
        self.workers = workers
        self.on_progress = on_progress
        self.should_stop = should_stop

        self.context: Optional[SchedulingContext] = None
        self.scorer: Optional[ScheduleScorer] = None
        self.sessions: List[Session] = []
        self.swarm: List[Particle] = []
        self.global_best: Optional[List[int]] = None
        self.global_best_fitness: float = -math.inf
        self.inertia_weight: float = self.params.inertia_weight
        self.history: List[IterationStats] = []

    # --- Setup ---

    def initialize_swarm(self, sessions: Sequence[Session], context: SchedulingContext) -> None:
        """Scatter particles within +/-2 slots of the incoming schedule."""
        if not context.time_slots:
            raise ValueError("PSO needs at least one time slot")

        self.context = context
        self.scorer = ScheduleScorer(context)
        self.sessions = list(sessions)
        self.inertia_weight = self.params.inertia_weight
        self.history = []
        self.global_best = None
        self.global_best_fitness = -math.inf

        v_max = self.params.max_velocity
        swarm = []
        for _ in range(self.params.swarm_size):
            position = [
                context.clamp_slot((s.time_slot_index or 0) + self.rng.randint(-2, 2))
                for s in self.sessions
            ]
            velocity = [self.rng.uniform(-v_max, v_max) for _ in self.sessions]
            swarm.append(Particle(position, velocity))

        self.swarm = swarm
        self._score_swarm()

    def fitness(self, position: Sequence[int]) -> float:
        return self.scorer.position_fitness(self.sessions, position)

    def _score_swarm(self) -> None:
        scores = evaluate_all(lambda p: self.fitness(p.position), self.swarm, self.workers)
        for particle, score in zip(self.swarm, scores):
            particle.fitness = score
            particle.update_personal_best()
            if particle.fitness > self.global_best_fitness:
                self.global_best_fitness = particle.fitness
                self.global_best = list(particle.position)

    # --- Motion ---

    def move_particle(self, particle: Particle) -> None:
        """Velocity and position update with both clamps applied."""
        w = self.inertia_weight
        c1, c2 = self.params.cognitive_coef, self.params.social_coef
        v_max = self.params.max_velocity
        max_index = self.context.num_slots - 1

        for d in range(len(particle.position)):
            r1, r2 = self.rng.random(), self.rng.random()
            x = particle.position[d]
            v = (
                w * particle.velocity[d]
                + c1 * r1 * (particle.best_position[d] - x)
                + c2 * r2 * (self.global_best[d] - x)
            )
            v = max(-v_max, min(v_max, v))
            particle.velocity[d] = v
            particle.position[d] = max(0, min(max_index, int(round(x + v))))

    def iterate(self) -> IterationStats:
        for particle in self.swarm:
            self.move_particle(particle)
        self._score_swarm()

        # Later iterations lean towards exploitation
        self.inertia_weight *= self.params.inertia_decay

        return IterationStats(
            iteration=len(self.history),
            global_best_fitness=self.global_best_fitness,
            avg_fitness=sum(p.fitness for p in self.swarm) / len(self.swarm)
        )

    def has_converged(self) -> bool:
        window = self.params.convergence_iterations
        if len(self.history) < window:
            return False
        recent = [h.global_best_fitness for h in self.history[-window:]]
        return max(recent) - min(recent) < self.params.convergence_threshold

    def run(self, sessions: Sequence[Session], context: SchedulingContext) -> PSOResult:
        self.initialize_swarm(sessions, context)
        initial = self.global_best_fitness
        total = self.params.iterations
        cancelled = False

        for it in range(total):
            if self.should_stop and self.should_stop():
                cancelled = True
                logger.info(f"PSO cancelled after {it} iterations")
                break

            stats = self.iterate()
            self.history.append(stats)
            logger.debug(f"PSO iter {it}: best={stats.global_best_fitness:.2f} avg={stats.avg_fitness:.2f}")

            if self.on_progress:
                self.on_progress({
                    "phase": "particle_swarm",
                    "iteration": it,
                    "total_iterations": total,
                    "best_fitness": stats.global_best_fitness,
                    "avg_fitness": stats.avg_fitness,
                    "progress": (it + 1) / total * 100,
                })

            if self.has_converged():
                logger.info(f"PSO converged at iteration {it}")
                break

        return PSOResult(
            global_best=list(self.global_best),
            global_best_fitness=self.global_best_fitness,
            initial_fitness=initial,
            iterations_run=len(self.history),
            converged=self.has_converged(),
            cancelled=cancelled,
            history=list(self.history)
        )

    def apply_best_solution(self) -> List[Session]:
        """Sessions rewritten onto the global-best slots."""
        if self.global_best is None:
            return list(self.sessions)
        return self.scorer.place(self.sessions, self.global_best)
