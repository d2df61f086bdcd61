"""
Medication Safety Routes Module
Interaction evaluation, drug lookup and reference data management
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from medsafety.api.dependencies import get_history, get_orchestrator, get_registry
from medsafety.core.logging import get_logger
from medsafety.schemas.schemas import (
    DrugAlternative,
    DrugResolution,
    EvaluationRequest,
    EvaluationResult,
    HistoryEntry,
    PairCheckRequest,
    PatientProfile,
    ReloadResponse,
)
from medsafety.services.evaluation_service import EvaluationOrchestrator, InvalidInputError
from medsafety.services.history_service import InMemoryEvaluationHistory
from medsafety.services.reference_data_service import ReferenceDataRegistry, RuleStoreLoadError
from medsafety.utils.correlation import get_correlation_id

logger = get_logger(__name__)

interaction_router = APIRouter(prefix="/interactions", tags=["interactions"])
drug_router = APIRouter(prefix="/drugs", tags=["drugs"])
reference_data_router = APIRouter(prefix="/reference-data", tags=["reference-data"])


def _unavailable(e: RuleStoreLoadError, correlation_id: str) -> HTTPException:
    logger.error("reference_data_unavailable", error=str(e), correlation_id=correlation_id)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Reference data is unavailable",
    )


# ============================================================================
# INTERACTION ROUTES
# ============================================================================

@interaction_router.post("/evaluate", response_model=EvaluationResult)
async def evaluate_medications(
    body: EvaluationRequest,
    request: Request,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
    history: InMemoryEvaluationHistory = Depends(get_history),
):
    """
    Evaluate a medication list for interactions, allergies and contraindications.

    Unresolvable names do not fail the request; they are reported as
    unresolved medications with a warning and an unknown-severity finding.
    """
    correlation_id = get_correlation_id(request)

    logger.info(
        "evaluation_request",
        medication_count=len(body.medications),
        allergy_count=len(body.allergies),
        condition_count=len(body.conditions),
        correlation_id=correlation_id,
    )

    try:
        result = await orchestrator.evaluate(
            medications=list(body.medications),
            profile=PatientProfile(allergies=body.allergies, conditions=body.conditions),
            timeout_seconds=body.timeout_seconds,
            correlation_id=correlation_id,
        )
    except InvalidInputError as e:
        logger.warning("evaluation_rejected", error=str(e), correlation_id=correlation_id)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except RuleStoreLoadError as e:
        raise _unavailable(e, correlation_id)

    history.record(result, correlation_id=correlation_id)
    return result


@interaction_router.post("/pair", response_model=EvaluationResult)
async def check_pair(
    body: PairCheckRequest,
    request: Request,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
):
    """Check one specific two-drug combination."""
    correlation_id = get_correlation_id(request)

    try:
        return await orchestrator.check_pair(
            body.drug_a,
            body.drug_b,
            PatientProfile(allergies=body.allergies, conditions=body.conditions),
            correlation_id=correlation_id,
        )
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except RuleStoreLoadError as e:
        raise _unavailable(e, correlation_id)


@interaction_router.get("/history", response_model=List[HistoryEntry])
async def list_history(
    limit: int = Query(20, ge=1, le=100),
    history: InMemoryEvaluationHistory = Depends(get_history),
):
    """Recent evaluations, newest first."""
    return history.list_entries(limit)


# ============================================================================
# DRUG ROUTES
# ============================================================================

@drug_router.get("/{name}", response_model=DrugResolution)
async def get_drug(
    name: str,
    request: Request,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
):
    """Resolve a drug name and return its canonical identity."""
    correlation_id = get_correlation_id(request)

    try:
        resolution = await orchestrator.describe_drug(name, correlation_id=correlation_id)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except RuleStoreLoadError as e:
        raise _unavailable(e, correlation_id)

    if not resolution.resolved:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=resolution.warning or f"Drug '{name}' not found",
        )

    return resolution


@drug_router.get("/{name}/alternatives", response_model=List[DrugAlternative])
async def get_alternatives(
    name: str,
    request: Request,
    orchestrator: EvaluationOrchestrator = Depends(get_orchestrator),
):
    """Dictionary drugs of the same therapeutic category but a different class."""
    correlation_id = get_correlation_id(request)

    try:
        return orchestrator.find_alternatives(name)
    except RuleStoreLoadError as e:
        raise _unavailable(e, correlation_id)


# ============================================================================
# REFERENCE DATA ROUTES
# ============================================================================

@reference_data_router.post("/reload", response_model=ReloadResponse)
async def reload_reference_data(
    request: Request,
    registry: ReferenceDataRegistry = Depends(get_registry),
):
    """
    Reload the configured reference dataset (REFERENCE_DATA_PATH).

    The new snapshot replaces the current one only once it is fully
    validated; a failed reload returns 400 and keeps serving the old data.
    """
    correlation_id = get_correlation_id(request)

    try:
        previous_version, snapshot = registry.reload(correlation_id=correlation_id)
    except RuleStoreLoadError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Reference data reload failed; the current dataset is still in use",
        )

    return ReloadResponse(previous_version=previous_version, version=snapshot.version)
