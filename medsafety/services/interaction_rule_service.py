"""
Interaction Rule Service - Pairwise and same-class interaction lookup
"""
from itertools import product
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from medsafety.core.logging import get_logger
from medsafety.schemas.schemas import (
    DrugIdentity,
    FindingType,
    InteractionFinding,
    InteractionRule,
    Severity,
)

logger = get_logger(__name__)

SAME_CLASS_RISK_SCORE = 4
SAME_CLASS_MECHANISM = "same-class duplication"


def sort_findings(findings: Sequence[InteractionFinding]) -> List[InteractionFinding]:
    """Order by severity rank, then risk score, both descending; stable on ties."""
    return sorted(findings, key=lambda f: (-f.severity.rank, -f.risk_score))


class InteractionRuleStore:
    """
    Read-only store of severity-classified interaction rules.

    A rule fires when every member is matched by a distinct drug of the
    evaluated set, once per distinct combination of matching drugs, so a
    class member reports every drug of that class. Drugs without a resolved
    identity expose no match tokens and never match.
    """

    def __init__(self, rules: Sequence[InteractionRule], version: str):
        self.version = version
        self._rules = tuple(rules)

    @property
    def rules(self) -> List[InteractionRule]:
        return list(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def find_pairwise(self, a: DrugIdentity, b: DrugIdentity) -> Optional[InteractionFinding]:
        """Most severe rule finding for two drugs, or None."""
        findings = sort_findings(self._match_rules([a, b]))
        return findings[0] if findings else None

    def find_same_class(self, drugs: Sequence[DrugIdentity]) -> List[InteractionFinding]:
        """One moderate finding per pharmacologic class held by two or more drugs."""
        groups: Dict[str, List[DrugIdentity]] = {}

        for drug in drugs:
            if not drug.pharmacologic_class:
                continue
            groups.setdefault(drug.pharmacologic_class.lower(), []).append(drug)

        findings = []
        for members in groups.values():
            if len(members) < 2:
                continue
            drug_class = members[0].pharmacologic_class
            names = [m.display_name for m in members]
            findings.append(
                InteractionFinding(
                    drug_a=names[0],
                    drug_b=names[1],
                    drugs=names,
                    severity=Severity.MODERATE,
                    mechanism=SAME_CLASS_MECHANISM,
                    description=(
                        f"Multiple {drug_class} medications detected ({', '.join(names)}). "
                        "This may lead to additive effects and increased side effects."
                    ),
                    recommendation=(
                        f"Review necessity of multiple {drug_class} medications. "
                        "Consider consolidation or dose adjustment."
                    ),
                    monitoring="therapeutic effects and side effects",
                    risk_score=SAME_CLASS_RISK_SCORE,
                    finding_type=FindingType.SAME_CLASS,
                )
            )

        return findings

    def find_interactions(self, drugs: Sequence[DrugIdentity]) -> List[InteractionFinding]:
        """All rule and same-class findings for a drug set, deterministically ordered."""
        findings = self._match_rules(drugs) + self.find_same_class(drugs)

        logger.debug(
            "interaction_lookup_complete",
            drugs=len(drugs),
            findings=len(findings),
            rule_set_version=self.version,
        )

        return sort_findings(findings)

    def _match_rules(self, drugs: Sequence[DrugIdentity]) -> List[InteractionFinding]:
        token_sets = [set(drug.match_tokens()) for drug in drugs]
        findings = []

        for rule in self._rules:
            seen: Set[Tuple[str, ...]] = set()

            for assigned in self._assignments(rule.members, token_sets):
                # Repeated entries of the same drug fire a rule once.
                key = tuple(sorted(drugs[i].key for i in assigned))
                if key in seen:
                    continue
                seen.add(key)

                names = [drugs[i].display_name for i in assigned]
                findings.append(
                    InteractionFinding(
                        drug_a=names[0],
                        drug_b=names[1],
                        drugs=names,
                        severity=rule.severity,
                        mechanism=rule.mechanism,
                        description=rule.description,
                        recommendation=rule.recommendation,
                        monitoring=rule.monitoring,
                        risk_score=rule.base_risk_score,
                        finding_type=FindingType.RULE,
                    )
                )

        return findings

    @staticmethod
    def _assignments(members: Sequence[str],
                     token_sets: Sequence[Set[str]]) -> Iterator[Tuple[int, ...]]:
        """Every way to match each member to a distinct drug, in input order."""
        candidates = [
            [i for i, tokens in enumerate(token_sets) if member in tokens]
            for member in members
        ]
        for assigned in product(*candidates):
            if len(set(assigned)) == len(assigned):
                yield assigned
