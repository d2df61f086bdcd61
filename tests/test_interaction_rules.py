"""
Interaction Rule Store Tests
"""
import pytest

from medsafety.schemas.schemas import (
    DrugIdentity,
    FindingType,
    InteractionFinding,
    InteractionRule,
    Severity,
)
from medsafety.services.interaction_rule_service import (
    SAME_CLASS_RISK_SCORE,
    InteractionRuleStore,
    sort_findings,
)


@pytest.fixture
def identity(dictionary):
    def build(name):
        return dictionary.to_identity(dictionary.lookup(name))
    return build


@pytest.fixture
def rule_store(snapshot):
    return snapshot.rule_store


def test_pairwise_rule_fires_in_either_order(rule_store, identity):
    """Rule membership is unordered."""
    forward = rule_store.find_pairwise(identity("warfarin"), identity("aspirin"))
    reverse = rule_store.find_pairwise(identity("aspirin"), identity("warfarin"))

    assert forward.severity == Severity.MAJOR
    assert reverse.severity == Severity.MAJOR
    assert forward.risk_score == reverse.risk_score == 9


def test_pairwise_no_rule(rule_store, identity):
    assert rule_store.find_pairwise(identity("metformin"), identity("omeprazole")) is None


def test_class_member_matches_any_drug_of_class(rule_store, identity):
    finding = rule_store.find_pairwise(identity("warfarin"), identity("naproxen"))

    assert finding.severity == Severity.MAJOR
    assert finding.drugs == ["Warfarin", "Naproxen"]


def test_class_to_class_rule(rule_store, identity):
    finding = rule_store.find_pairwise(identity("enalapril"), identity("ibuprofen"))

    assert finding is not None
    assert finding.severity == Severity.MODERATE


def test_same_class_duplication(rule_store, identity):
    findings = rule_store.find_same_class([identity("ibuprofen"), identity("naproxen")])

    assert len(findings) == 1
    assert findings[0].severity == Severity.MODERATE
    assert findings[0].risk_score == SAME_CLASS_RISK_SCORE
    assert findings[0].finding_type == FindingType.SAME_CLASS


def test_same_class_ignores_single_member(rule_store, identity):
    assert rule_store.find_same_class([identity("ibuprofen"), identity("metformin")]) == []


def test_unresolved_identity_never_matches(rule_store, identity):
    unknown = DrugIdentity(display_name="mystery")
    assert rule_store.find_interactions([unknown, identity("warfarin")]) == []


def test_rule_needs_distinct_drugs():
    """A single drug cannot satisfy two members of the same rule."""
    store = InteractionRuleStore(
        [
            InteractionRule(
                members=["warfarin", "class:anticoagulant"],
                severity=Severity.MAJOR,
                mechanism="m",
                description="d",
                recommendation="r",
                base_risk_score=5,
            )
        ],
        "v1",
    )
    warfarin = DrugIdentity(
        canonical_id="11289", generic_name="warfarin", display_name="Warfarin",
        pharmacologic_class="anticoagulant",
    )

    assert store.find_interactions([warfarin]) == []


def test_findings_sorted_by_severity_then_score(rule_store, identity):
    drugs = [identity(name) for name in ("omeprazole", "aspirin", "clopidogrel", "warfarin")]
    findings = rule_store.find_interactions(drugs)

    keys = [(f.severity.rank, f.risk_score) for f in findings]
    assert keys == sorted(keys, reverse=True)
    assert findings[0].severity == Severity.MAJOR
    assert findings[-1].severity == Severity.MINOR


def test_evaluation_is_deterministic(rule_store, identity):
    drugs = [identity(name) for name in ("warfarin", "ibuprofen", "naproxen", "lisinopril")]

    first = rule_store.find_interactions(drugs)
    second = rule_store.find_interactions(drugs)

    assert first == second


def test_sort_findings_stable_on_ties():
    def finding(name):
        return InteractionFinding(
            drug_a=name, drugs=[name], severity=Severity.MODERATE,
            mechanism="m", description="d", recommendation="r", risk_score=4,
        )

    ordered = sort_findings([finding("a"), finding("b"), finding("c")])
    assert [f.drug_a for f in ordered] == ["a", "b", "c"]


def test_rule_requires_two_distinct_members():
    with pytest.raises(ValueError):
        InteractionRule(
            members=["aspirin", "Aspirin"],
            severity=Severity.MINOR,
            mechanism="m",
            description="d",
            recommendation="r",
            base_risk_score=1,
        )


def test_class_rule_pairs_each_class_member(rule_store, identity):
    """ACE inhibitor + NSAID fires for every combination of class members."""
    drugs = [identity(name) for name in ("lisinopril", "enalapril", "ibuprofen", "naproxen")]
    findings = [
        f for f in rule_store.find_interactions(drugs)
        if f.mechanism == "reduced antihypertensive effect"
    ]

    assert [f.drugs for f in findings] == [
        ["Lisinopril", "Ibuprofen"],
        ["Lisinopril", "Naproxen"],
        ["Enalapril", "Ibuprofen"],
        ["Enalapril", "Naproxen"],
    ]
