"""
Evaluation History Service - Caller-side record of past evaluations

The engine itself keeps no history; the API layer records a summary of each
evaluation here after it completes.
"""
from collections import deque
from datetime import datetime, timezone
from typing import List, Optional
import threading
import uuid

from medsafety.core.config import settings
from medsafety.core.logging import get_logger
from medsafety.schemas.schemas import EvaluationResult, HistoryEntry

logger = get_logger(__name__)


class InMemoryEvaluationHistory:
    """Bounded, newest-first evaluation history."""

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries or settings.HISTORY_MAX_ENTRIES
        self._entries: deque = deque(maxlen=self.max_entries)
        self._lock = threading.Lock()

    def record(self, result: EvaluationResult, correlation_id: str = "") -> HistoryEntry:
        """Store a summary of an evaluation result."""
        entry = HistoryEntry(
            id=str(uuid.uuid4()),
            recorded_at=datetime.now(timezone.utc),
            medications=[m.original_name for m in result.medications],
            overall_risk=result.overall_risk,
            overall_risk_score=result.overall_risk_score,
            interaction_count=len(result.interactions),
            allergy_count=len(result.allergies),
            contraindication_count=len(result.contraindications),
            unresolved_count=sum(1 for m in result.medications if not m.resolved),
            correlation_id=correlation_id,
        )

        with self._lock:
            self._entries.appendleft(entry)

        logger.debug("evaluation_recorded", history_id=entry.id, correlation_id=correlation_id)
        return entry

    def list_entries(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        with self._lock:
            entries = list(self._entries)
        return entries[:limit] if limit else entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Global instance
evaluation_history = InMemoryEvaluationHistory()
