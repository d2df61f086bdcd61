"""
Pydantic Schemas Module
Reference data, evaluation domain objects, and API request/response schemas
"""
from datetime import datetime
from typing import Optional, List, Dict, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum


# ============================================================================
# ENUMS
# ============================================================================

class Severity(str, Enum):
    """Interaction severity, ordered contraindicated > major > moderate > minor > unknown."""
    CONTRAINDICATED = "contraindicated"
    MAJOR = "major"
    MODERATE = "moderate"
    MINOR = "minor"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CONTRAINDICATED: 4,
    Severity.MAJOR: 3,
    Severity.MODERATE: 2,
    Severity.MINOR: 1,
    Severity.UNKNOWN: 0,
}


class RiskLevel(str, Enum):
    """Intrinsic risk level of a single drug."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskTier(str, Enum):
    """Aggregate risk tier of a whole medication list."""
    CRITICAL = "critical"
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"
    MINIMAL = "minimal"


class Priority(str, Enum):
    """Recommendation priority."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 2, "medium": 1, "low": 0}[self.value]


class ResolutionSource(str, Enum):
    """Where a drug identity came from."""
    DICTIONARY = "dictionary"
    TERMINOLOGY = "terminology"
    UNRESOLVED = "unresolved"


class FindingType(str, Enum):
    """Kind of interaction finding."""
    RULE = "rule"
    SAME_CLASS = "same_class"
    UNRESOLVED = "unresolved"


class RecommendationType(str, Enum):
    """Recommendation category."""
    INTERACTION = "interaction"
    ALLERGY = "allergy"
    CONTRAINDICATION = "contraindication"
    VERIFICATION = "verification"
    MONITORING = "monitoring"


# ============================================================================
# REFERENCE DATA SCHEMAS - loaded once, immutable
# ============================================================================

class DrugRecord(BaseModel):
    """Dictionary entry for a known drug."""
    model_config = ConfigDict(frozen=True)

    generic_name: str = Field(..., min_length=1)
    display_name: str
    rxcui: Optional[str] = None
    brand_names: List[str] = []
    pharmacologic_class: str
    category: Optional[str] = None
    mechanism: Optional[str] = None
    risk_level: RiskLevel = RiskLevel.MEDIUM
    common_doses: List[str] = []
    food_interactions: List[str] = []
    contraindications: List[str] = []
    side_effects: List[str] = []
    monitoring_required: bool = False


class InteractionRule(BaseModel):
    """
    Severity-classified interaction rule.

    Members are generic names, RxNorm ids, or class tokens (``class:<name>``).
    """
    model_config = ConfigDict(frozen=True)

    members: List[str] = Field(..., min_length=2)
    severity: Severity
    mechanism: str
    description: str
    recommendation: str
    monitoring: str = ""
    base_risk_score: int = Field(..., ge=0)

    @field_validator("members")
    def normalize_members(cls, v: List[str]) -> List[str]:
        members = [m.strip().lower() for m in v]
        if any(not m for m in members):
            raise ValueError("rule members must be non-empty")
        if len(set(members)) < 2:
            raise ValueError("rule needs at least two distinct members")
        return members


class AllergyRecord(BaseModel):
    """Allergy reference entry with its cross-reactive drugs."""
    model_config = ConfigDict(frozen=True)

    allergy: str = Field(..., min_length=1, description="Name a patient declares")
    allergen: str
    aliases: List[str] = []
    cross_reactive: List[str] = []
    severity: str
    symptoms: List[str] = []
    alternatives: List[str] = []


class ReferenceData(BaseModel):
    """Versioned reference dataset."""
    model_config = ConfigDict(frozen=True)

    schema_version: int
    version: str = Field(..., min_length=1)
    drugs: List[DrugRecord]
    interaction_rules: List[InteractionRule]
    allergies: List[AllergyRecord] = []


# ============================================================================
# RESOLUTION SCHEMAS
# ============================================================================

class DrugIdentity(BaseModel):
    """Canonical drug identity produced by resolution."""
    model_config = ConfigDict(frozen=True)

    canonical_id: Optional[str] = None
    generic_name: Optional[str] = None
    display_name: str
    pharmacologic_class: Optional[str] = None
    category: Optional[str] = None
    risk_level: Optional[RiskLevel] = None
    dose_forms: List[str] = []
    brand_names: List[str] = []
    contraindications: List[str] = []
    food_interactions: List[str] = []
    monitoring_required: bool = False

    @property
    def key(self) -> str:
        """Stable identity key used for de-duplication."""
        return self.generic_name or self.canonical_id or self.display_name.lower()

    def match_tokens(self) -> List[str]:
        """Tokens an interaction rule member may match."""
        tokens = []
        if self.generic_name:
            tokens.append(self.generic_name.lower())
        if self.canonical_id:
            tokens.append(self.canonical_id.lower())
        if self.pharmacologic_class:
            tokens.append(f"class:{self.pharmacologic_class.lower()}")
        return tokens


class DrugResolution(BaseModel):
    """Outcome of resolving one free-text medication name."""
    model_config = ConfigDict(frozen=True)

    query: str
    normalized_name: str
    identity: DrugIdentity
    resolved: bool
    source: ResolutionSource
    warning: Optional[str] = None


class DrugAlternative(BaseModel):
    """Alternative drug suggestion."""
    generic_name: str
    display_name: str
    pharmacologic_class: str
    mechanism: Optional[str] = None
    risk_level: RiskLevel


# ============================================================================
# EVALUATION SCHEMAS
# ============================================================================

class MedicationInput(BaseModel):
    """Medication as submitted by a caller."""
    name: str = Field(..., min_length=1, max_length=200)
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    route: Optional[str] = None


class PatientProfile(BaseModel):
    """Patient facts evaluated alongside the medication list."""
    allergies: List[str] = []
    conditions: List[str] = []


class MedicationEntry(BaseModel):
    """One medication of an evaluation request, with its resolution."""
    model_config = ConfigDict(frozen=True)

    original_name: str
    dosage: Optional[str] = None
    frequency: Optional[str] = None
    route: Optional[str] = None
    resolved_identity: Optional[DrugIdentity] = None
    resolved: bool
    source: ResolutionSource
    warning: Optional[str] = None


class InteractionFinding(BaseModel):
    """Pairwise, same-class, or unresolved-identity finding."""
    model_config = ConfigDict(frozen=True)

    drug_a: str
    drug_b: Optional[str] = None
    drugs: List[str]
    severity: Severity
    mechanism: str
    description: str
    recommendation: str
    monitoring: str = ""
    risk_score: int
    finding_type: FindingType = FindingType.RULE


class AllergyFinding(BaseModel):
    """Drug matching a declared allergy."""
    model_config = ConfigDict(frozen=True)

    medication: str
    declared_allergy: str
    allergen: str
    severity: str
    symptoms: List[str] = []
    alternatives: List[str] = []
    warning: str


class ContraindicationFinding(BaseModel):
    """Drug contraindicated by a patient condition."""
    model_config = ConfigDict(frozen=True)

    medication: str
    condition: str
    contraindication: str
    reason: str
    severity: Severity = Severity.MAJOR
    action: str = "Consider alternative medication"


class Recommendation(BaseModel):
    """Actionable recommendation."""
    model_config = ConfigDict(frozen=True)

    type: RecommendationType
    priority: Priority
    message: str
    related_drugs: List[str] = []


class EvaluationResult(BaseModel):
    """Complete result of one medication safety evaluation."""
    model_config = ConfigDict(frozen=True)

    medications: List[MedicationEntry]
    interactions: List[InteractionFinding]
    allergies: List[AllergyFinding]
    contraindications: List[ContraindicationFinding]
    overall_risk_score: int
    overall_risk: RiskTier
    recommendations: List[Recommendation]
    warnings: List[str] = []
    high_risk_interactions: int = 0
    requires_action: bool = False
    reference_data_version: str
    evaluated_at: datetime


# ============================================================================
# API SCHEMAS
# ============================================================================

class EvaluationRequest(BaseModel):
    """Medication safety evaluation request."""
    medications: List[Union[MedicationInput, str]]
    allergies: List[str] = []
    conditions: List[str] = []
    timeout_seconds: Optional[float] = Field(None, gt=0, le=60)


class PairCheckRequest(BaseModel):
    """Two-drug interaction check request."""
    drug_a: str = Field(..., min_length=1, max_length=200)
    drug_b: str = Field(..., min_length=1, max_length=200)
    allergies: List[str] = []
    conditions: List[str] = []


class HistoryEntry(BaseModel):
    """Summary of a past evaluation kept by the caller."""
    id: str
    recorded_at: datetime
    medications: List[str]
    overall_risk: RiskTier
    overall_risk_score: int
    interaction_count: int
    allergy_count: int
    contraindication_count: int
    unresolved_count: int
    correlation_id: str = ""


class ReloadResponse(BaseModel):
    """Reference data reload response."""
    previous_version: Optional[str]
    version: str


class HealthCheck(BaseModel):
    """Health check response schema."""
    status: str
    timestamp: datetime
    version: str
    reference_data_version: Optional[str]
    redis: str
    resolver: Dict[str, int] = {}


class ErrorResponse(BaseModel):
    """Error response schema."""
    error: str
    detail: Optional[str] = None
    correlation_id: Optional[str] = None
    timestamp: datetime
