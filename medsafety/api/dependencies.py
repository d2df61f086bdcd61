"""
API Dependencies Module
Dependency Inversion: Inject engine components rather than import them in routes
"""
from medsafety.services.evaluation_service import EvaluationOrchestrator, evaluation_orchestrator
from medsafety.services.history_service import InMemoryEvaluationHistory, evaluation_history
from medsafety.services.reference_data_service import (
    ReferenceDataRegistry,
    reference_data_registry,
)


def get_orchestrator() -> EvaluationOrchestrator:
    """Evaluation engine used by the interaction and drug routes."""
    return evaluation_orchestrator


def get_history() -> InMemoryEvaluationHistory:
    return evaluation_history


def get_registry() -> ReferenceDataRegistry:
    return reference_data_registry
