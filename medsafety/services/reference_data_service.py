"""
Reference Data Service - Load, validate and version the static clinical datasets
"""
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union
import json
import threading

from pydantic import ValidationError

from medsafety.core.config import settings
from medsafety.core.logging import get_logger, audit_logger
from medsafety.schemas.schemas import ReferenceData
from medsafety.services.allergy_service import AllergyMatcher
from medsafety.services.drug_resolver_service import DrugDictionary
from medsafety.services.interaction_rule_service import InteractionRuleStore

logger = get_logger(__name__)

SUPPORTED_SCHEMA_VERSIONS = {1}
DEFAULT_REFERENCE_DATA_PATH = Path(__file__).resolve().parent.parent / "data" / "reference_data.json"


class RuleStoreLoadError(Exception):
    """Reference data is missing, malformed, or of an unknown version."""
    pass


class ReferenceSnapshot:
    """Immutable bundle of drug dictionary, rule store and allergy matcher for one data version."""

    def __init__(self, data: ReferenceData):
        self.version = data.version
        self.dictionary = DrugDictionary(data.drugs, data.version)
        self.rule_store = InteractionRuleStore(data.interaction_rules, data.version)
        self.allergy_matcher = AllergyMatcher(data.allergies)


def build_snapshot(raw: Any, source: str = "<memory>") -> ReferenceSnapshot:
    """Validate raw reference data and build a snapshot; all or nothing."""
    if not isinstance(raw, dict):
        raise RuleStoreLoadError(f"Reference data in {source} must be a JSON object")

    schema_version = raw.get("schema_version")
    if schema_version not in SUPPORTED_SCHEMA_VERSIONS:
        raise RuleStoreLoadError(
            f"Unsupported reference data schema version {schema_version!r} in {source}"
        )

    try:
        data = ReferenceData.model_validate(raw)
        snapshot = ReferenceSnapshot(data)
    except ValidationError as e:
        raise RuleStoreLoadError(f"Malformed reference data in {source}: {e}") from e
    except ValueError as e:
        raise RuleStoreLoadError(f"Inconsistent reference data in {source}: {str(e)}") from e

    _warn_unknown_members(data)

    logger.info(
        "reference_data_validated",
        source=source,
        version=data.version,
        drugs=len(data.drugs),
        rules=len(data.interaction_rules),
        allergies=len(data.allergies),
    )

    return snapshot


def _warn_unknown_members(data: ReferenceData) -> None:
    known = set()
    for drug in data.drugs:
        known.add(drug.generic_name.lower())
        known.add(f"class:{drug.pharmacologic_class.lower()}")
        if drug.rxcui:
            known.add(drug.rxcui)

    for rule in data.interaction_rules:
        unknown = [m for m in rule.members if m not in known]
        if unknown:
            # Such members can still match identities resolved by the terminology service.
            logger.warning("rule_member_not_in_dictionary", members=unknown, version=data.version)


def load_reference_data(path: Optional[Union[str, Path]] = None) -> ReferenceSnapshot:
    """
    Load reference data from a JSON file.

    Args:
        path: Dataset path; falls back to REFERENCE_DATA_PATH, then the bundled dataset

    Raises:
        RuleStoreLoadError: file missing or unreadable, invalid JSON, unknown
            schema version, or a malformed rule
    """
    source = Path(path or settings.REFERENCE_DATA_PATH or DEFAULT_REFERENCE_DATA_PATH)

    try:
        raw = json.loads(source.read_text(encoding="utf-8"))
    except OSError as e:
        raise RuleStoreLoadError(f"Cannot read reference data {source}: {str(e)}") from e
    except json.JSONDecodeError as e:
        raise RuleStoreLoadError(f"Reference data {source} is not valid JSON: {str(e)}") from e

    return build_snapshot(raw, source=str(source))


class ReferenceDataRegistry:
    """
    Holds the current reference snapshot.

    A reload builds the new snapshot completely before swapping the reference,
    so evaluations holding the previous snapshot keep a consistent view and a
    failed reload leaves the current snapshot in place.
    """

    def __init__(self):
        self._snapshot: Optional[ReferenceSnapshot] = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    @property
    def current(self) -> ReferenceSnapshot:
        snapshot = self._snapshot
        if snapshot is None:
            raise RuleStoreLoadError("Reference data has not been loaded")
        return snapshot

    def load(self, path: Optional[Union[str, Path]] = None,
             correlation_id: str = "") -> Tuple[Optional[str], ReferenceSnapshot]:
        """Load (or reload) reference data; returns the previous version and the new snapshot."""
        snapshot = load_reference_data(path)
        return self.install(snapshot, correlation_id=correlation_id)

    def reload(self, path: Optional[Union[str, Path]] = None,
               correlation_id: str = "") -> Tuple[Optional[str], ReferenceSnapshot]:
        """Replace the current snapshot; on failure the current one stays in place."""
        try:
            return self.load(path, correlation_id=correlation_id)
        except RuleStoreLoadError as e:
            logger.error(
                "reference_data_reload_failed",
                error=str(e),
                kept_version=self._snapshot.version if self._snapshot else None,
                correlation_id=correlation_id,
            )
            raise

    def load_dict(self, raw: Dict[str, Any],
                  correlation_id: str = "") -> Tuple[Optional[str], ReferenceSnapshot]:
        """Install reference data given as an already-parsed mapping."""
        return self.install(build_snapshot(raw), correlation_id=correlation_id)

    def install(self, snapshot: ReferenceSnapshot,
                correlation_id: str = "") -> Tuple[Optional[str], ReferenceSnapshot]:
        with self._lock:
            previous = self._snapshot
            self._snapshot = snapshot

        previous_version = previous.version if previous else None
        audit_logger.log_reference_data_change(
            previous_version=previous_version,
            version=snapshot.version,
            correlation_id=correlation_id,
        )
        return previous_version, snapshot


# Global instance
reference_data_registry = ReferenceDataRegistry()
