"""
Risk Aggregation Service
"""
from typing import List, Sequence, Tuple

from medsafety.schemas.schemas import (
    AllergyFinding,
    ContraindicationFinding,
    FindingType,
    InteractionFinding,
    MedicationEntry,
    RiskTier,
    Severity,
)

ALLERGY_WEIGHT = 10
CONTRAINDICATION_WEIGHT = 8
UNRESOLVED_RISK_SCORE = 1

# Inclusive lower bounds, checked in order
TIER_THRESHOLDS = (
    (15, RiskTier.CRITICAL),
    (8, RiskTier.HIGH),
    (4, RiskTier.MODERATE),
    (1, RiskTier.LOW),
)


class RiskAggregator:
    """Combine findings into a weighted risk score and tier."""

    def aggregate(
        self,
        interactions: Sequence[InteractionFinding],
        allergies: Sequence[AllergyFinding],
        contraindications: Sequence[ContraindicationFinding],
    ) -> Tuple[int, RiskTier]:
        score = (
            sum(finding.risk_score for finding in interactions)
            + ALLERGY_WEIGHT * len(allergies)
            + CONTRAINDICATION_WEIGHT * len(contraindications)
        )
        return score, self.tier_for(score)

    @staticmethod
    def tier_for(score: int) -> RiskTier:
        for threshold, tier in TIER_THRESHOLDS:
            if score >= threshold:
                return tier
        return RiskTier.MINIMAL

    @staticmethod
    def unresolved_findings(entries: Sequence[MedicationEntry]) -> List[InteractionFinding]:
        """One informational finding per medication whose identity could not be resolved."""
        return [
            InteractionFinding(
                drug_a=entry.original_name,
                drugs=[entry.original_name],
                severity=Severity.UNKNOWN,
                mechanism="unresolved drug identity",
                description=(
                    f"'{entry.original_name}' could not be identified, so its interactions, "
                    "allergies and contraindications were not checked."
                    + (f" {entry.warning}." if entry.warning else "")
                ),
                recommendation=(
                    f"Verify '{entry.original_name}' manually before relying on this evaluation."
                ),
                risk_score=UNRESOLVED_RISK_SCORE,
                finding_type=FindingType.UNRESOLVED,
            )
            for entry in entries
            if not entry.resolved
        ]


# Global instance
risk_aggregator = RiskAggregator()
