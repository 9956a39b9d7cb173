"""
Pytest fixtures for the hybrid therapy scheduler tests.
"""

import pytest

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from models import (
    Patient,
    ResourcePool,
    Room,
    Therapist,
    TherapyProtocol,
    generate_time_slots,
)
from scheduler.config import GAConfig, PSOConfig, SchedulerConfig
from scheduler.state import SchedulingContext

from helpers import START

# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def protocol():
    """Two-step Vamana course."""
    return TherapyProtocol(
        id="t1",
        name="Vamana",
        workflow=[
            {"id": "w1", "step": 1, "action": "Snehapana (Internal Oleation)"},
            {"id": "w2", "step": 2, "action": "Abhyanga & Swedana"},
        ],
        contraindications=["Cardiac conditions"]
    )


@pytest.fixture
def single_step_protocol():
    return TherapyProtocol(
        id="t2",
        name="Vamana",
        workflow=[{"id": "w1", "step": 1, "action": "Vamana Karma"}],
        contraindications=[]
    )


@pytest.fixture
def patient():
    return Patient(id="p1", name="Ramesh Gupta", conditions=["Hypertension"])


@pytest.fixture
def therapist():
    return Therapist(
        id="emp1",
        name="Dr. Arya",
        skills=["Vamana", "Virechana"],
        shifts=["Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
    )


@pytest.fixture
def room():
    return Room(id="room1", name="Treatment Room 1")


@pytest.fixture
def resources(therapist, room):
    return ResourcePool(therapists=[therapist], rooms=[room])


@pytest.fixture
def time_slots():
    return generate_time_slots(START, horizon_days=14)


@pytest.fixture
def context(protocol, patient, therapist, room, time_slots):
    return SchedulingContext.build(
        therapy=protocol,
        patient=patient,
        therapists=[therapist],
        rooms=[room, Room(id="room2")],
        time_slots=time_slots
    )


@pytest.fixture
def placement_config():
    """Rule-based placement only, fixed start date."""
    return SchedulerConfig(enable_ga=False, enable_pso=False, start_date=START, seed=7)


@pytest.fixture
def small_ga():
    return GAConfig(population_size=8, generations=5, elitism_count=2, tournament_size=3)


@pytest.fixture
def small_pso():
    return PSOConfig(swarm_size=6, iterations=5)
