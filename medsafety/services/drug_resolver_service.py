"""
Drug Identity Resolver Service - Brand/generic normalization with terminology fallback
"""
from collections import Counter, OrderedDict
from typing import Dict, List, Optional, Sequence, Tuple
import asyncio
import threading
import time

from medsafety.core.cache import CacheManager, cache_manager
from medsafety.core.config import settings
from medsafety.core.logging import get_logger
from medsafety.schemas.schemas import (
    DrugAlternative,
    DrugIdentity,
    DrugRecord,
    DrugResolution,
    ResolutionSource,
)
from medsafety.services.terminology_service import (
    TerminologyService,
    TerminologyServiceError,
    TerminologyTimeoutError,
    terminology_service,
)

logger = get_logger(__name__)


def normalize_name(name: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return " ".join(name.strip().lower().split())


class DrugDictionary:
    """In-memory dictionary of known drugs keyed by generic name, brand alias and RxCUI."""

    def __init__(self, records: Sequence[DrugRecord], version: str):
        self.version = version
        self._records: List[DrugRecord] = list(records)
        self._by_name: Dict[str, DrugRecord] = {}
        self._by_rxcui: Dict[str, DrugRecord] = {}

        for record in self._records:
            for alias in [record.generic_name] + list(record.brand_names):
                self._index_name(normalize_name(alias), record)
            if record.rxcui:
                if record.rxcui in self._by_rxcui:
                    raise ValueError(f"Duplicate RxCUI {record.rxcui} in drug dictionary")
                self._by_rxcui[record.rxcui] = record

    def _index_name(self, alias: str, record: DrugRecord) -> None:
        existing = self._by_name.get(alias)
        if existing is not None and existing.generic_name != record.generic_name:
            raise ValueError(
                f"Alias '{alias}' maps to both {existing.generic_name} and {record.generic_name}"
            )
        self._by_name[alias] = record

    @property
    def records(self) -> List[DrugRecord]:
        return list(self._records)

    def lookup(self, normalized_name: str) -> Optional[DrugRecord]:
        return self._by_name.get(normalized_name)

    def lookup_rxcui(self, rxcui: str) -> Optional[DrugRecord]:
        return self._by_rxcui.get(rxcui)

    def __len__(self) -> int:
        return len(self._records)

    @staticmethod
    def to_identity(record: DrugRecord) -> DrugIdentity:
        return DrugIdentity(
            canonical_id=record.rxcui or record.generic_name,
            generic_name=record.generic_name,
            display_name=record.display_name,
            pharmacologic_class=record.pharmacologic_class,
            category=record.category,
            risk_level=record.risk_level,
            dose_forms=list(record.common_doses),
            brand_names=list(record.brand_names),
            contraindications=list(record.contraindications),
            food_interactions=list(record.food_interactions),
            monitoring_required=record.monitoring_required,
        )


class ResolutionCache:
    """
    Process-level resolution cache.

    Thread-safe, LRU-bounded and namespaced by reference data version: storing
    an entry under a new version drops every entry of the previous one.
    Entries without a TTL never expire while their version is current.
    """

    def __init__(self, max_entries: int = 10000):
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._version: Optional[str] = None
        self._entries: "OrderedDict[str, Tuple[DrugResolution, Optional[float]]]" = OrderedDict()

    def get(self, version: str, key: str) -> Optional[DrugResolution]:
        with self._lock:
            if version != self._version:
                return None
            entry = self._entries.get(key)
            if entry is None:
                return None
            resolution, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return resolution

    def set(self, version: str, key: str, resolution: DrugResolution,
            ttl: Optional[float] = None) -> None:
        expires_at = time.monotonic() + ttl if ttl is not None else None
        with self._lock:
            if version != self._version:
                if self._entries:
                    logger.info(
                        "resolution_cache_invalidated",
                        previous_version=self._version,
                        version=version,
                        dropped=len(self._entries),
                    )
                self._entries.clear()
                self._version = version
            self._entries[key] = (resolution, expires_at)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class DrugResolverService:
    """
    Resolve free-text medication names into canonical drug identities.

    Local dictionary first, external terminology service as fallback. Failures
    never raise: they produce an unresolved identity carrying a warning.
    """

    def __init__(
        self,
        terminology: Optional[TerminologyService] = None,
        cache: Optional[ResolutionCache] = None,
        shared_cache: Optional[CacheManager] = None,
        max_concurrency: Optional[int] = None,
        transient_miss_ttl: Optional[float] = None,
    ):
        self.terminology = terminology
        self.cache = cache if cache is not None else ResolutionCache(
            settings.RESOLVER_CACHE_MAX_ENTRIES
        )
        self.shared_cache = shared_cache
        self.transient_miss_ttl = (
            transient_miss_ttl
            if transient_miss_ttl is not None
            else settings.RESOLVER_TRANSIENT_MISS_TTL_SECONDS
        )
        self._semaphore = asyncio.Semaphore(max_concurrency or settings.RESOLVER_MAX_CONCURRENCY)
        self._stats: Counter = Counter()

    async def resolve(
        self,
        name: str,
        dictionary: DrugDictionary,
        correlation_id: str = "",
    ) -> DrugResolution:
        """
        Resolve one medication name.

        Args:
            name: Free-text brand or generic name
            dictionary: Drug dictionary of the current reference data snapshot
            correlation_id: Request tracking ID

        Returns:
            DrugResolution, resolved or not
        """
        normalized = normalize_name(name)

        if not normalized:
            return self._unresolved(name, normalized, "Empty medication name")

        cached = self.cache.get(dictionary.version, normalized)
        if cached is not None:
            self._stats["cache_hits"] += 1
            return cached.model_copy(update={"query": name})

        record = dictionary.lookup(normalized)
        if record is not None:
            self._stats["dictionary_hits"] += 1
            resolution = DrugResolution(
                query=name,
                normalized_name=normalized,
                identity=dictionary.to_identity(record),
                resolved=True,
                source=ResolutionSource.DICTIONARY,
            )
            self.cache.set(dictionary.version, normalized, resolution)
            return resolution

        shared = await self._shared_get(dictionary.version, normalized)
        if shared is not None:
            self._stats["shared_cache_hits"] += 1
            self.cache.set(dictionary.version, normalized, shared)
            return shared.model_copy(update={"query": name})

        resolution, ttl = await self._resolve_external(name, normalized, dictionary, correlation_id)

        self.cache.set(dictionary.version, normalized, resolution, ttl=ttl)
        if ttl is None:
            await self._shared_set(dictionary.version, normalized, resolution)

        if not resolution.resolved:
            logger.warning(
                "drug_unresolved",
                name=name,
                warning=resolution.warning,
                correlation_id=correlation_id,
            )

        return resolution

    async def _resolve_external(
        self,
        name: str,
        normalized: str,
        dictionary: DrugDictionary,
        correlation_id: str,
    ) -> Tuple[DrugResolution, Optional[float]]:
        """Terminology fallback; returns the resolution and its cache TTL."""
        if self.terminology is None:
            self._stats["misses"] += 1
            return self._unresolved(
                name, normalized,
                f"'{name}' is not in the drug dictionary and terminology lookup is disabled",
            ), None

        try:
            async with self._semaphore:
                details = await self.terminology.lookup(name, correlation_id=correlation_id)
        except TerminologyTimeoutError:
            self._stats["timeouts"] += 1
            self._stats["misses"] += 1
            return self._unresolved(
                name, normalized, f"Terminology lookup for '{name}' timed out"
            ), self.transient_miss_ttl
        except TerminologyServiceError as e:
            self._stats["terminology_errors"] += 1
            self._stats["misses"] += 1
            logger.error(
                "terminology_lookup_error",
                name=name,
                error=str(e),
                correlation_id=correlation_id,
            )
            return self._unresolved(
                name, normalized, f"Terminology service unavailable while resolving '{name}'"
            ), self.transient_miss_ttl

        if not details:
            self._stats["misses"] += 1
            return self._unresolved(
                name, normalized,
                f"'{name}' was not found in the drug dictionary or terminology service",
            ), None

        self._stats["terminology_hits"] += 1
        record = dictionary.lookup_rxcui(details["rxcui"]) or dictionary.lookup(
            normalize_name(details.get("name") or "")
        )

        if record is not None:
            identity = dictionary.to_identity(record)
        else:
            concept_name = details.get("name") or name
            identity = DrugIdentity(
                canonical_id=details["rxcui"],
                generic_name=normalize_name(concept_name),
                display_name=concept_name,
                pharmacologic_class=details.get("pharmacologic_class"),
            )

        return DrugResolution(
            query=name,
            normalized_name=normalized,
            identity=identity,
            resolved=True,
            source=ResolutionSource.TERMINOLOGY,
        ), None

    @staticmethod
    def _unresolved(name: str, normalized: str, warning: str) -> DrugResolution:
        return DrugResolution(
            query=name,
            normalized_name=normalized,
            identity=DrugIdentity(display_name=name.strip() or name),
            resolved=False,
            source=ResolutionSource.UNRESOLVED,
            warning=warning,
        )

    async def _shared_get(self, version: str, normalized: str) -> Optional[DrugResolution]:
        if self.shared_cache is None or not self.shared_cache.connected:
            return None
        payload = await self.shared_cache.get(self._shared_key(version, normalized))
        if payload is None:
            return None
        try:
            return DrugResolution.model_validate(payload)
        except ValueError as e:
            logger.warning("shared_cache_payload_invalid", key=normalized, error=str(e))
            return None

    async def _shared_set(self, version: str, normalized: str, resolution: DrugResolution) -> None:
        if self.shared_cache is None or not self.shared_cache.connected:
            return
        await self.shared_cache.set(
            self._shared_key(version, normalized),
            resolution.model_dump(mode="json"),
        )

    @staticmethod
    def _shared_key(version: str, normalized: str) -> str:
        return f"drug_identity:{version}:{normalized}"

    def find_alternatives(self, name: str, dictionary: DrugDictionary) -> List[DrugAlternative]:
        """Drugs of the same therapeutic category but a different pharmacologic class."""
        record = dictionary.lookup(normalize_name(name))
        if record is None or not record.category:
            return []

        return [
            DrugAlternative(
                generic_name=other.generic_name,
                display_name=other.display_name,
                pharmacologic_class=other.pharmacologic_class,
                mechanism=other.mechanism,
                risk_level=other.risk_level,
            )
            for other in dictionary.records
            if other.category == record.category
            and other.pharmacologic_class.lower() != record.pharmacologic_class.lower()
            and other.generic_name != record.generic_name
        ]

    def stats(self) -> Dict[str, int]:
        """Resolver hit/miss counters."""
        stats = {
            key: self._stats.get(key, 0)
            for key in (
                "dictionary_hits",
                "terminology_hits",
                "cache_hits",
                "shared_cache_hits",
                "misses",
                "timeouts",
                "terminology_errors",
            )
        }
        stats["cached_entries"] = len(self.cache)
        return stats


# Global instance
drug_resolver_service = DrugResolverService(
    terminology=terminology_service if settings.TERMINOLOGY_ENABLED else None,
    shared_cache=cache_manager if settings.RESOLVER_SHARED_CACHE_ENABLED else None,
)
