"""
Recommendation Service - Turn findings into prioritized actions
"""
from typing import List, Sequence

from medsafety.schemas.schemas import (
    AllergyFinding,
    ContraindicationFinding,
    FindingType,
    InteractionFinding,
    Priority,
    Recommendation,
    RecommendationType,
    Severity,
)

MONITORING_MESSAGE = (
    "Regular monitoring recommended due to identified drug interactions or contraindications"
)

_INTERACTION_PRIORITY = {
    Severity.CONTRAINDICATED: Priority.HIGH,
    Severity.MAJOR: Priority.HIGH,
    Severity.MODERATE: Priority.MEDIUM,
    Severity.UNKNOWN: Priority.MEDIUM,
    Severity.MINOR: Priority.LOW,
}


class RecommendationGenerator:
    """Generate recommendations sorted high to low priority, stable on ties."""

    def generate(
        self,
        interactions: Sequence[InteractionFinding],
        allergies: Sequence[AllergyFinding],
        contraindications: Sequence[ContraindicationFinding],
        risk_score: int,
    ) -> List[Recommendation]:
        recommendations = []

        for finding in interactions:
            recommendations.append(
                Recommendation(
                    type=(
                        RecommendationType.VERIFICATION
                        if finding.finding_type == FindingType.UNRESOLVED
                        else RecommendationType.INTERACTION
                    ),
                    priority=_INTERACTION_PRIORITY[finding.severity],
                    message=finding.recommendation,
                    related_drugs=list(finding.drugs),
                )
            )

        for allergy in allergies:
            message = f"Discontinue {allergy.medication} due to {allergy.allergen} allergy."
            if allergy.alternatives:
                message += f" Consider alternatives: {', '.join(allergy.alternatives)}"
            recommendations.append(
                Recommendation(
                    type=RecommendationType.ALLERGY,
                    priority=Priority.HIGH,
                    message=message,
                    related_drugs=[allergy.medication],
                )
            )

        for contra in contraindications:
            recommendations.append(
                Recommendation(
                    type=RecommendationType.CONTRAINDICATION,
                    priority=Priority.HIGH,
                    message=f"{contra.action}: {contra.reason}",
                    related_drugs=[contra.medication],
                )
            )

        if risk_score > 0:
            recommendations.append(
                Recommendation(
                    type=RecommendationType.MONITORING,
                    priority=Priority.MEDIUM,
                    message=MONITORING_MESSAGE,
                )
            )

        return sorted(recommendations, key=lambda r: -r.priority.rank)


# Global instance
recommendation_generator = RecommendationGenerator()
