"""
Allergy and Contraindication Service
"""
from typing import Dict, List, Optional, Sequence

from medsafety.core.logging import get_logger
from medsafety.schemas.schemas import (
    AllergyFinding,
    AllergyRecord,
    ContraindicationFinding,
    DrugIdentity,
)
from medsafety.services.drug_resolver_service import normalize_name

logger = get_logger(__name__)


def _unique_drugs(drugs: Sequence[DrugIdentity]) -> List[DrugIdentity]:
    seen = set()
    unique = []
    for drug in drugs:
        if drug.key in seen:
            continue
        seen.add(drug.key)
        unique.append(drug)
    return unique


def _drug_names(drug: DrugIdentity) -> set:
    names = {normalize_name(drug.display_name)}
    if drug.generic_name:
        names.add(normalize_name(drug.generic_name))
    if drug.canonical_id:
        names.add(normalize_name(drug.canonical_id))
    return names


class AllergyMatcher:
    """Cross-reference patient allergies and conditions against resolved drugs."""

    def __init__(self, records: Sequence[AllergyRecord]):
        self._records = tuple(records)
        self._index: Dict[str, AllergyRecord] = {}

        for record in self._records:
            for name in [record.allergy] + list(record.aliases):
                key = normalize_name(name)
                existing = self._index.get(key)
                if existing is not None and existing is not record:
                    raise ValueError(f"Allergy name '{key}' is declared twice")
                self._index[key] = record

    def __len__(self) -> int:
        return len(self._records)

    def lookup(self, allergy: str) -> Optional[AllergyRecord]:
        return self._index.get(normalize_name(allergy))

    def check_allergies(
        self,
        drugs: Sequence[DrugIdentity],
        allergies: Sequence[str],
    ) -> List[AllergyFinding]:
        """
        Find drugs matching a declared allergy.

        A drug matches when it is in the allergy's cross-reactive set, or when
        the declared allergy names the drug itself.
        """
        findings = []
        seen = set()
        candidates = _unique_drugs(drugs)

        for allergy in allergies:
            declared = normalize_name(allergy)
            if not declared:
                continue

            record = self._index.get(declared)
            cross_reactive = (
                {normalize_name(name) for name in record.cross_reactive} if record else set()
            )
            allergen = record.allergen if record else declared

            for drug in candidates:
                names = _drug_names(drug)
                if declared not in names and not (names & cross_reactive):
                    continue
                if (drug.key, allergen) in seen:
                    continue
                seen.add((drug.key, allergen))

                findings.append(
                    AllergyFinding(
                        medication=drug.display_name,
                        declared_allergy=allergy,
                        allergen=allergen,
                        severity=record.severity if record else "documented allergy",
                        symptoms=list(record.symptoms) if record else [],
                        alternatives=list(record.alternatives) if record else [],
                        warning=(
                            f"Patient has documented {allergy} allergy. "
                            f"{drug.display_name} may cause an allergic reaction."
                        ),
                    )
                )

        if findings:
            logger.info("allergy_matches_found", count=len(findings))

        return findings

    def check_contraindications(
        self,
        drugs: Sequence[DrugIdentity],
        conditions: Sequence[str],
    ) -> List[ContraindicationFinding]:
        """
        Find drugs contraindicated by a patient condition.

        Matching is a case-insensitive substring test in both directions, so
        "kidney disease" matches "severe kidney disease" and vice versa.
        """
        findings = []

        for drug in _unique_drugs(drugs):
            contraindications = [
                (contra, normalize_name(contra))
                for contra in drug.contraindications
                if normalize_name(contra)
            ]
            if not contraindications:
                continue

            for condition in conditions:
                normalized = normalize_name(condition)
                if not normalized:
                    continue

                match = next(
                    (
                        contra for contra, key in contraindications
                        if normalized in key or key in normalized
                    ),
                    None,
                )
                if match is None:
                    continue

                findings.append(
                    ContraindicationFinding(
                        medication=drug.display_name,
                        condition=condition,
                        contraindication=match,
                        reason=f"{drug.display_name} is contraindicated in patients with {condition}",
                    )
                )

        if findings:
            logger.info("contraindications_found", count=len(findings))

        return findings
