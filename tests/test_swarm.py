"""
Tests for the particle swarm refiner.
"""

import random
from dataclasses import replace

import pytest

from scheduler.swarm import Particle, SwarmRefiner
from scheduler.scoring import ScheduleScorer

from helpers import make_session


@pytest.fixture
def seed_sessions(context):
    """Two sessions on the first two slots, as initial placement would leave them."""
    workflow = context.workflow
    return [context.make_session(step, "emp1", "room1", i) for i, step in enumerate(workflow)]


class TestParticle:

    def test_dimensions_must_match(self):
        with pytest.raises(ValueError):
            Particle(position=[0, 1], velocity=[0.0])

    def test_personal_best_tracks_improvement(self):
        particle = Particle(position=[1, 2], velocity=[0.0, 0.0])
        particle.fitness = 50
        particle.update_personal_best()
        particle.position = [3, 4]
        particle.fitness = 40
        particle.update_personal_best()
        assert particle.best_fitness == 50
        assert particle.best_position == [1, 2]


class TestMotion:

    def test_swarm_seeded_near_incoming_schedule(self, small_pso, context, seed_sessions):
        refiner = SwarmRefiner(small_pso, random.Random(1))
        refiner.initialize_swarm(seed_sessions, context)
        for particle in refiner.swarm:
            for dim, session in zip(particle.position, seed_sessions):
                assert abs(dim - session.time_slot_index) <= 2
                assert 0 <= dim < context.num_slots

    def test_clamps_hold_for_extreme_pulls(self, small_pso, context, seed_sessions):
        refiner = SwarmRefiner(small_pso, random.Random(2))
        refiner.initialize_swarm(seed_sessions, context)
        last = context.num_slots - 1
        refiner.global_best = [last, last]

        for _ in range(20):
            for particle in refiner.swarm:
                particle.velocity = [1e6, -1e6]
                particle.best_position = [0, last]
                refiner.move_particle(particle)
                assert all(abs(v) <= small_pso.max_velocity for v in particle.velocity)
                assert all(0 <= x <= last for x in particle.position)
                assert all(isinstance(x, int) for x in particle.position)

    def test_inertia_decays_each_iteration(self, small_pso, context, seed_sessions):
        refiner = SwarmRefiner(small_pso, random.Random(3))
        refiner.initialize_swarm(seed_sessions, context)
        refiner.iterate()
        refiner.iterate()
        expected = small_pso.inertia_weight * small_pso.inertia_decay ** 2
        assert refiner.inertia_weight == pytest.approx(expected)
        # Config itself is untouched
        assert small_pso.inertia_weight == 0.7


class TestFitness:

    def test_fitness_in_range(self, context, seed_sessions):
        scorer = ScheduleScorer(context)
        rng = random.Random(5)
        for _ in range(50):
            position = [rng.randrange(context.num_slots) for _ in seed_sessions]
            assert 0.0 <= scorer.position_fitness(seed_sessions, position) <= 100.0

    def test_existing_overlap_is_penalised(self, context, seed_sessions):
        existing = make_session("old", seed_sessions[0].start, seed_sessions[0].end, therapist_id="emp9")
        busy = replace(context, existing_sessions=(existing,))
        scorer = ScheduleScorer(busy)
        assert scorer.count_existing_conflicts(scorer.place(seed_sessions, [0, 1])) == 1
        assert scorer.count_existing_conflicts(scorer.place(seed_sessions, [1, 2])) == 0

    def test_component_scores(self):
        assert ScheduleScorer.sequence_score([0, 1, 2]) == 1.0
        assert ScheduleScorer.sequence_score([2, 1, 0]) == 0.0
        assert ScheduleScorer.compactness_score([0, 1, 2]) == 1.0
        assert ScheduleScorer.compactness_score([0, 4]) == pytest.approx(0.25)


class TestRun:

    def test_global_best_never_decreases(self, small_pso, context, seed_sessions):
        params = small_pso.model_copy(update={"iterations": 20, "convergence_iterations": 50})
        result = SwarmRefiner(params, random.Random(6)).run(seed_sessions, context)
        best = [h.global_best_fitness for h in result.history]
        assert all(b >= a for a, b in zip(best, best[1:]))
        assert result.global_best_fitness >= result.initial_fitness

    def test_best_solution_stays_in_bounds(self, small_pso, context, seed_sessions):
        refiner = SwarmRefiner(small_pso, random.Random(7))
        result = refiner.run(seed_sessions, context)
        assert all(0 <= x < context.num_slots for x in result.global_best)
        refined = refiner.apply_best_solution()
        assert len(refined) == len(seed_sessions)
        assert [s.time_slot_index for s in refined] == result.global_best
        assert [s.therapist_id for s in refined] == [s.therapist_id for s in seed_sessions]

    def test_progress_and_stop(self, small_pso, context, seed_sessions):
        events = []
        refiner = SwarmRefiner(small_pso, random.Random(8), on_progress=events.append,
                               should_stop=lambda: len(events) >= 2)
        result = refiner.run(seed_sessions, context)
        assert result.cancelled
        assert result.iterations_run == 2
        assert events[0]["phase"] == "particle_swarm"
        assert events[0]["total_iterations"] == small_pso.iterations
