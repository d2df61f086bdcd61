"""
Evaluation Service - Public entry point of the medication safety engine

Stages run in a fixed order:
Resolving -> InteractionCheck -> SafetyCheck -> Aggregating -> Recommending -> Done.
Only Resolving performs I/O and only it may partially fail; failures there
become warnings on the affected medication entry.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
import asyncio
import time

from pydantic import ValidationError

from medsafety.core.config import settings
from medsafety.core.logging import get_logger, audit_logger
from medsafety.schemas.schemas import (
    DrugAlternative,
    DrugIdentity,
    DrugResolution,
    EvaluationResult,
    MedicationEntry,
    MedicationInput,
    PatientProfile,
    ResolutionSource,
    Severity,
)
from medsafety.services.drug_resolver_service import (
    DrugResolverService,
    drug_resolver_service,
    normalize_name,
)
from medsafety.services.interaction_rule_service import sort_findings
from medsafety.services.recommendation_service import (
    RecommendationGenerator,
    recommendation_generator,
)
from medsafety.services.reference_data_service import (
    ReferenceDataRegistry,
    ReferenceSnapshot,
    reference_data_registry,
)
from medsafety.services.risk_service import RiskAggregator, risk_aggregator

logger = get_logger(__name__)

MedicationLike = Union[str, MedicationInput, Dict[str, Any]]
HIGH_RISK_SEVERITIES = {Severity.CONTRAINDICATED, Severity.MAJOR}


class InvalidInputError(Exception):
    """Evaluation request rejected before any stage ran."""
    pass


class EvaluationStage(str, Enum):
    """Evaluation pipeline stages."""
    RESOLVING = "resolving"
    INTERACTION_CHECK = "interaction_check"
    SAFETY_CHECK = "safety_check"
    AGGREGATING = "aggregating"
    RECOMMENDING = "recommending"
    DONE = "done"


class EvaluationOrchestrator:
    """Sequence resolution, rule lookup, safety checks, scoring and recommendations."""

    def __init__(
        self,
        registry: ReferenceDataRegistry = reference_data_registry,
        resolver: DrugResolverService = drug_resolver_service,
        aggregator: RiskAggregator = risk_aggregator,
        recommender: RecommendationGenerator = recommendation_generator,
        default_timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.resolver = resolver
        self.aggregator = aggregator
        self.recommender = recommender
        self.default_timeout = (
            default_timeout if default_timeout is not None else settings.EVALUATION_TIMEOUT_SECONDS
        )

    async def evaluate(
        self,
        medications: Sequence[MedicationLike],
        profile: Optional[Union[PatientProfile, Dict[str, Any]]] = None,
        timeout_seconds: Optional[float] = None,
        correlation_id: str = "",
    ) -> EvaluationResult:
        """
        Evaluate a medication list against interaction rules and a patient profile.

        Args:
            medications: Ordered medication names or MedicationInput objects
            profile: Patient allergies and conditions
            timeout_seconds: Deadline for the resolution stage; pending lookups
                are cancelled and reported as unresolved when it expires
            correlation_id: Request tracking ID

        Returns:
            EvaluationResult

        Raises:
            InvalidInputError: empty medication list or malformed profile
            RuleStoreLoadError: reference data unavailable
        """
        meds = self._validate_medications(medications)
        patient = self._validate_profile(profile)
        snapshot = self.registry.current
        start_time = time.perf_counter()

        self._enter(EvaluationStage.RESOLVING, correlation_id)
        timeout = timeout_seconds if timeout_seconds is not None else self.default_timeout
        entries, warnings = await self._resolve_all(meds, snapshot, timeout, correlation_id)

        self._enter(EvaluationStage.INTERACTION_CHECK, correlation_id)
        resolved = [entry.resolved_identity for entry in entries if entry.resolved]
        interactions = sort_findings(
            snapshot.rule_store.find_interactions(resolved)
            + self.aggregator.unresolved_findings(entries)
        )

        self._enter(EvaluationStage.SAFETY_CHECK, correlation_id)
        allergies = snapshot.allergy_matcher.check_allergies(resolved, patient.allergies)
        contraindications = snapshot.allergy_matcher.check_contraindications(
            resolved, patient.conditions
        )

        self._enter(EvaluationStage.AGGREGATING, correlation_id)
        score, tier = self.aggregator.aggregate(interactions, allergies, contraindications)

        self._enter(EvaluationStage.RECOMMENDING, correlation_id)
        recommendations = self.recommender.generate(
            interactions, allergies, contraindications, score
        )

        high_risk = sum(1 for finding in interactions if finding.severity in HIGH_RISK_SEVERITIES)
        result = EvaluationResult(
            medications=entries,
            interactions=interactions,
            allergies=allergies,
            contraindications=contraindications,
            overall_risk_score=score,
            overall_risk=tier,
            recommendations=recommendations,
            warnings=warnings,
            high_risk_interactions=high_risk,
            requires_action=bool(high_risk or allergies or contraindications),
            reference_data_version=snapshot.version,
            evaluated_at=datetime.now(timezone.utc),
        )

        self._enter(EvaluationStage.DONE, correlation_id)
        audit_logger.log_evaluation(
            medication_count=len(entries),
            unresolved_count=sum(1 for entry in entries if not entry.resolved),
            overall_risk=tier.value,
            risk_score=score,
            duration_ms=(time.perf_counter() - start_time) * 1000,
            reference_data_version=snapshot.version,
            correlation_id=correlation_id,
        )

        return result

    async def check_pair(
        self,
        drug_a: str,
        drug_b: str,
        profile: Optional[Union[PatientProfile, Dict[str, Any]]] = None,
        correlation_id: str = "",
    ) -> EvaluationResult:
        """Evaluate one specific two-drug combination."""
        return await self.evaluate([drug_a, drug_b], profile, correlation_id=correlation_id)

    async def describe_drug(self, name: str, correlation_id: str = "") -> DrugResolution:
        """Resolve a single drug name against the current reference data."""
        if not isinstance(name, str) or not name.strip():
            raise InvalidInputError("Drug name must be a non-empty string")
        snapshot = self.registry.current
        return await self.resolver.resolve(name, snapshot.dictionary, correlation_id=correlation_id)

    def find_alternatives(self, name: str) -> List[DrugAlternative]:
        """Dictionary alternatives for a drug."""
        snapshot = self.registry.current
        return self.resolver.find_alternatives(name, snapshot.dictionary)

    async def _resolve_all(
        self,
        meds: List[MedicationInput],
        snapshot: ReferenceSnapshot,
        timeout: Optional[float],
        correlation_id: str,
    ) -> Tuple[List[MedicationEntry], List[str]]:
        """Resolve distinct names concurrently and join before the next stage."""
        unique: Dict[str, str] = {}
        for med in meds:
            unique.setdefault(normalize_name(med.name), med.name)

        tasks = {
            key: asyncio.create_task(
                self.resolver.resolve(name, snapshot.dictionary, correlation_id=correlation_id)
            )
            for key, name in unique.items()
        }

        try:
            done, pending = await asyncio.wait(tasks.values(), timeout=timeout)
        except asyncio.CancelledError:
            for task in tasks.values():
                task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)
            logger.info("evaluation_cancelled", pending=len(tasks), correlation_id=correlation_id)
            raise

        warnings: List[str] = []
        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(
                "resolution_deadline_exceeded",
                timeout_seconds=timeout,
                pending=len(pending),
                correlation_id=correlation_id,
            )
            warnings.append(
                f"Evaluation deadline of {timeout}s exceeded; "
                f"{len(pending)} medication name(s) could not be resolved in time"
            )

        resolutions: Dict[str, DrugResolution] = {}
        for key, task in tasks.items():
            name = unique[key]
            if task in pending or task.cancelled():
                resolutions[key] = self._unresolved(
                    name, key,
                    f"Resolution of '{name}' did not complete before the evaluation deadline",
                )
            elif task.exception() is not None:
                logger.error(
                    "resolution_task_failed",
                    name=name,
                    error=str(task.exception()),
                    correlation_id=correlation_id,
                )
                resolutions[key] = self._unresolved(name, key, f"Resolution of '{name}' failed")
            else:
                resolutions[key] = task.result()

        entries = []
        for med in meds:
            entry = self._build_entry(med, resolutions[normalize_name(med.name)])
            entries.append(entry)
            if not entry.resolved:
                warnings.append(f"{entry.original_name}: {entry.warning}")

        return entries, warnings

    @staticmethod
    def _unresolved(name: str, normalized: str, warning: str) -> DrugResolution:
        return DrugResolution(
            query=name,
            normalized_name=normalized,
            identity=DrugIdentity(display_name=name),
            resolved=False,
            source=ResolutionSource.UNRESOLVED,
            warning=warning,
        )

    @staticmethod
    def _build_entry(med: MedicationInput, resolution: DrugResolution) -> MedicationEntry:
        return MedicationEntry(
            original_name=med.name,
            dosage=med.dosage,
            frequency=med.frequency,
            route=med.route,
            resolved_identity=resolution.identity if resolution.resolved else None,
            resolved=resolution.resolved,
            source=resolution.source,
            warning=resolution.warning,
        )

    @staticmethod
    def _validate_medications(medications: Sequence[MedicationLike]) -> List[MedicationInput]:
        if isinstance(medications, (str, bytes)) or not isinstance(medications, (list, tuple)):
            raise InvalidInputError("Medications must be a list")
        if not medications:
            raise InvalidInputError("At least one medication is required")

        meds = []
        for index, item in enumerate(medications):
            if isinstance(item, MedicationInput):
                med = item
            elif isinstance(item, str):
                med = MedicationInput.model_construct(name=item, dosage=None, frequency=None, route=None)
            elif isinstance(item, dict):
                try:
                    med = MedicationInput.model_validate(item)
                except ValidationError as e:
                    raise InvalidInputError(f"Medication #{index + 1} is invalid: {e}") from e
            else:
                raise InvalidInputError(
                    f"Medication #{index + 1} must be a string or medication object"
                )

            if not med.name.strip():
                raise InvalidInputError(f"Medication #{index + 1} has an empty name")
            meds.append(med)

        return meds

    @staticmethod
    def _validate_profile(
        profile: Optional[Union[PatientProfile, Dict[str, Any]]],
    ) -> PatientProfile:
        if profile is None:
            return PatientProfile()
        if isinstance(profile, PatientProfile):
            return profile
        if not isinstance(profile, dict):
            raise InvalidInputError("Patient profile must be an object")

        for field in ("allergies", "conditions"):
            values = profile.get(field) or []
            if not isinstance(values, (list, tuple)):
                raise InvalidInputError(f"Profile {field} must be a list of strings")
            if any(not isinstance(value, str) for value in values):
                raise InvalidInputError(f"Profile {field} must contain only strings")

        return PatientProfile(
            allergies=list(profile.get("allergies") or []),
            conditions=list(profile.get("conditions") or []),
        )

    @staticmethod
    def _enter(stage: EvaluationStage, correlation_id: str) -> None:
        logger.debug("evaluation_stage", stage=stage.value, correlation_id=correlation_id)


# Global instance
evaluation_orchestrator = EvaluationOrchestrator()
