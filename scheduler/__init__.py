"""
Scheduling core: constraint engine, optimizers, priority model, explainability and the orchestrator.
"""

from .config import GAConfig, PSOConfig, SchedulerConfig
from .engine import HybridScheduler, PendingPreemption, ScheduleResult
from .errors import (
    ConfigurationError,
    EligibilityError,
    InternalError,
    RunCancelledError,
    SchedulingError,
    UnresolvedConflictError
)
from .explainability import DecisionType, ExplainabilityLog
from .priority import PreemptionManager, PriorityQueueManager, apply_priority_heuristics
from .service import InMemoryRepository, SchedulingRepository, SchedulingService

__all__ = [
    "GAConfig",
    "PSOConfig",
    "SchedulerConfig",
    "HybridScheduler",
    "PendingPreemption",
    "ScheduleResult",
    "SchedulingError",
    "EligibilityError",
    "ConfigurationError",
    "UnresolvedConflictError",
    "InternalError",
    "RunCancelledError",
    "DecisionType",
    "ExplainabilityLog",
    "PreemptionManager",
    "PriorityQueueManager",
    "apply_priority_heuristics",
    "InMemoryRepository",
    "SchedulingRepository",
    "SchedulingService",
]
