"""
Configuration for the Hybrid Therapy Scheduler.

Manages default settings and environment overrides for:
- Scheduling horizon and working hours
- Genetic algorithm parameters
- Particle swarm parameters
- Reproducibility (seed) and evaluation parallelism
"""

import os
from datetime import date
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator


class GAConfig(BaseModel):
    """Genetic algorithm parameters."""
    population_size: int = Field(default=50, ge=2)
    generations: int = Field(default=100, ge=1)
    mutation_rate: float = Field(default=0.1, ge=0.0, le=1.0)
    crossover_rate: float = Field(default=0.8, ge=0.0, le=1.0)
    elitism_count: int = Field(default=2, ge=0)
    tournament_size: int = Field(default=3, ge=1)
    convergence_threshold: float = Field(default=0.001, ge=0.0)
    convergence_generations: int = Field(default=10, ge=1)

    @model_validator(mode='after')
    def validate_population(self):
        if self.elitism_count >= self.population_size:
            raise ValueError("elitism_count must be smaller than population_size")
        if self.tournament_size > self.population_size:
            raise ValueError("tournament_size cannot exceed population_size")
        return self


class PSOConfig(BaseModel):
    """Particle swarm parameters."""
    swarm_size: int = Field(default=30, ge=1)
    iterations: int = Field(default=50, ge=1)
    inertia_weight: float = Field(default=0.7, ge=0.0)
    inertia_decay: float = Field(default=0.99, gt=0.0, le=1.0)
    cognitive_coef: float = Field(default=1.5, ge=0.0)  # personal best pull
    social_coef: float = Field(default=1.5, ge=0.0)  # global best pull
    max_velocity: float = Field(default=3.0, gt=0.0)
    convergence_threshold: float = Field(default=0.001, ge=0.0)
    convergence_iterations: int = Field(default=5, ge=1)


class MaterialNeed(BaseModel):
    """Amount of one inventory material consumed by a single session."""
    name: str = Field(min_length=1)
    quantity: float = Field(gt=0)


class SchedulerConfig(BaseModel):
    """Main configuration container for one scheduling run."""
    enable_ga: bool = True
    enable_pso: bool = True
    enable_explainability: bool = True

    # --- Time Grid ---
    scheduling_horizon_days: int = Field(default=14, ge=1, le=366)
    working_hours_start: int = Field(default=9, ge=0, le=23)
    working_hours_end: int = Field(default=18, ge=1, le=24)
    time_slot_duration_hours: int = Field(default=2, ge=1, le=12)
    start_date: Optional[date] = Field(default=None, description="First day of the horizon. Defaults to today.")
    timezone: str = Field(default="UTC", description="IANA zone the working hours are expressed in")

    # --- Constraint Tuning ---
    min_gap_hours: float = Field(default=1.0, ge=0)
    max_gap_hours: float = Field(default=48.0, gt=0)
    material_requirements: Dict[str, List[MaterialNeed]] = Field(
        default_factory=dict,
        description="Per session-type overrides merged on top of the default material table"
    )

    # --- Optimizers ---
    ga: GAConfig = Field(default_factory=GAConfig)
    pso: PSOConfig = Field(default_factory=PSOConfig)
    seed: Optional[int] = Field(default=None, description="Seed for the GA/PSO random source")
    parallel_workers: int = Field(default=1, ge=1, description="Threads used for fitness evaluation")

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v!r}") from e
        return v

    @model_validator(mode='after')
    def validate_hours(self):
        if self.working_hours_end <= self.working_hours_start:
            raise ValueError("working_hours_end must be after working_hours_start")
        if self.max_gap_hours < self.min_gap_hours:
            raise ValueError("max_gap_hours cannot be below min_gap_hours")
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        """Load configuration from environment variables, falling back to the defaults."""
        seed = os.getenv("SCHEDULER_SEED")
        return cls(
            enable_ga=os.getenv("ENABLE_GA", "true").lower() == "true",
            enable_pso=os.getenv("ENABLE_PSO", "true").lower() == "true",
            enable_explainability=os.getenv("ENABLE_EXPLAINABILITY", "true").lower() == "true",
            scheduling_horizon_days=int(os.getenv("SCHEDULING_HORIZON_DAYS", "14")),
            working_hours_start=int(os.getenv("WORKING_HOURS_START", "9")),
            working_hours_end=int(os.getenv("WORKING_HOURS_END", "18")),
            time_slot_duration_hours=int(os.getenv("TIME_SLOT_DURATION_HOURS", "2")),
            timezone=os.getenv("SCHEDULER_TIMEZONE", "UTC"),
            seed=int(seed) if seed else None,
            parallel_workers=int(os.getenv("PARALLEL_WORKERS", "1")),
        )


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
