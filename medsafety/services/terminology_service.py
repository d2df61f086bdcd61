"""
Terminology Service - Resolve free-text drug names against RxNav (RxNorm)
"""
from typing import List, Dict, Any, Optional
import asyncio
import aiohttp

from medsafety.core.config import settings
from medsafety.core.logging import get_logger

logger = get_logger(__name__)


class TerminologyServiceError(Exception):
    """Terminology service exception."""
    pass


class TerminologyTimeoutError(TerminologyServiceError):
    """Terminology lookup exceeded its deadline."""
    pass


class TerminologyService:
    """Client for the RxNav name-search and concept-details endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_candidates: Optional[int] = None,
    ):
        self.base_url = (base_url or settings.TERMINOLOGY_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.TERMINOLOGY_TIMEOUT_SECONDS
        self.max_candidates = max_candidates or settings.TERMINOLOGY_MAX_CANDIDATES

    async def lookup(self, name: str, correlation_id: str = "") -> Optional[Dict[str, Any]]:
        """
        Resolve a drug name to concept details using the best candidate.

        Args:
            name: Free-text medication name
            correlation_id: Request tracking ID

        Returns:
            Concept details, or None when the service has no match

        Raises:
            TerminologyTimeoutError: lookup exceeded the configured timeout
            TerminologyServiceError: service unreachable or returned an error
        """
        try:
            return await asyncio.wait_for(
                self._lookup(name, correlation_id),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.warning(
                "terminology_timeout",
                name=name,
                timeout_seconds=self.timeout_seconds,
                correlation_id=correlation_id,
            )
            raise TerminologyTimeoutError(
                f"Terminology lookup for '{name}' timed out after {self.timeout_seconds}s"
            ) from e

    async def _lookup(self, name: str, correlation_id: str) -> Optional[Dict[str, Any]]:
        async with self._session() as session:
            candidates = await self._search(session, name)

            if not candidates:
                logger.info("terminology_no_match", name=name, correlation_id=correlation_id)
                return None

            details = await self._details(session, candidates[0]["rxcui"])

            logger.info(
                "terminology_match",
                name=name,
                rxcui=details["rxcui"],
                candidates=len(candidates),
                correlation_id=correlation_id,
            )

            return details

    async def search_concepts(self, name: str) -> List[Dict[str, Any]]:
        """Search candidate concepts for a free-text name, best first."""
        async with self._session() as session:
            return await self._search(session, name)

    async def get_concept_details(self, rxcui: str) -> Dict[str, Any]:
        """Get ingredient-level name and pharmacologic class for a concept id."""
        async with self._session() as session:
            return await self._details(session, rxcui)

    def _session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
        )

    async def _search(self, session: aiohttp.ClientSession, name: str) -> List[Dict[str, Any]]:
        data = await self._get_json(
            session,
            "/approximateTerm.json",
            {"term": name, "maxEntries": self.max_candidates},
        )
        try:
            return self._parse_candidates(data)
        except (AttributeError, TypeError, ValueError) as e:
            raise TerminologyServiceError(f"Malformed approximate-term response: {str(e)}") from e

    async def _details(self, session: aiohttp.ClientSession, rxcui: str) -> Dict[str, Any]:
        related = await self._get_json(session, f"/rxcui/{rxcui}/related.json", {"tty": "IN"})

        try:
            ingredient = self._parse_ingredient(related)
            if ingredient is None:
                properties = await self._get_json(session, f"/rxcui/{rxcui}/properties.json", {})
                props = properties.get("properties") or {}
                ingredient = {"rxcui": props.get("rxcui", rxcui), "name": props.get("name", "")}
        except (AttributeError, TypeError) as e:
            raise TerminologyServiceError(f"Malformed concept response for {rxcui}: {str(e)}") from e

        drug_class = await self._drug_class(session, ingredient["rxcui"])

        return {
            "rxcui": ingredient["rxcui"],
            "name": ingredient["name"],
            "pharmacologic_class": drug_class,
        }

    async def _drug_class(self, session: aiohttp.ClientSession, rxcui: str) -> Optional[str]:
        # Class metadata is optional; a resolved identity without a class is still usable.
        try:
            data = await self._get_json(
                session,
                "/rxclass/class/byRxcui.json",
                {"rxcui": rxcui, "relaSource": "ATC"},
            )
        except TerminologyServiceError as e:
            logger.warning("terminology_class_lookup_failed", rxcui=rxcui, error=str(e))
            return None

        try:
            infos = (data.get("rxclassDrugInfoList") or {}).get("rxclassDrugInfo") or []
            for info in infos:
                class_name = (info.get("rxclassMinConceptItem") or {}).get("className")
                if class_name:
                    return class_name
        except (AttributeError, TypeError) as e:
            logger.warning("terminology_class_lookup_failed", rxcui=rxcui, error=str(e))
        return None

    async def _get_json(
        self,
        session: aiohttp.ClientSession,
        path: str,
        params: Dict[str, Any],
    ) -> Dict[str, Any]:
        try:
            async with session.get(f"{self.base_url}{path}", params=params) as response:
                if response.status != 200:
                    raise TerminologyServiceError(f"Terminology API error: {response.status}")
                data = await response.json(content_type=None) or {}
        except asyncio.TimeoutError as e:
            raise TerminologyTimeoutError(f"Terminology request {path} timed out") from e
        except aiohttp.ClientError as e:
            raise TerminologyServiceError(f"Terminology request {path} failed: {str(e)}") from e
        except ValueError as e:
            raise TerminologyServiceError(f"Terminology response for {path} is not JSON") from e

        if not isinstance(data, dict):
            raise TerminologyServiceError(f"Terminology response for {path} is not an object")
        return data

    @staticmethod
    def _parse_candidates(data: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Parse approximate-term candidates, de-duplicated and ordered by rank."""
        group = data.get("approximateGroup") or {}
        seen = set()
        candidates = []

        for item in group.get("candidate") or []:
            rxcui = item.get("rxcui")
            if not rxcui or rxcui in seen:
                continue
            seen.add(rxcui)
            candidates.append({
                "rxcui": rxcui,
                "name": item.get("name", ""),
                "score": float(item.get("score") or 0),
                "rank": int(item.get("rank") or len(candidates) + 1),
            })

        return sorted(candidates, key=lambda c: c["rank"])

    @staticmethod
    def _parse_ingredient(data: Dict[str, Any]) -> Optional[Dict[str, str]]:
        groups = (data.get("relatedGroup") or {}).get("conceptGroup") or []
        for group in groups:
            props = group.get("conceptProperties") or []
            if props and props[0].get("rxcui"):
                return {"rxcui": props[0]["rxcui"], "name": props[0].get("name", "")}
        return None


# Global instance
terminology_service = TerminologyService()
