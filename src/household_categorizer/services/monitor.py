from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from household_categorizer.logger import get_logger
from household_categorizer.models import CategorizationSource, CategorizationStats, CategoryDiscoveryResult

logger = get_logger(__name__)

MAX_SESSIONS = 1000


@dataclass(frozen=True)
class SessionMetrics:
    user_id: str
    stats: CategorizationStats
    average_confidence: float
    processing_time: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class AccuracySummary:
    sessions: int
    total_transactions: int
    hit_rates: dict[str, float]
    average_confidence: float
    average_processing_time: float


def _summarize(sessions: list[SessionMetrics]) -> AccuracySummary:
    total = sum(session.stats.total for session in sessions)
    hit_rates = {}
    for source in CategorizationSource:
        hits = sum(getattr(session.stats, source.value) for session in sessions)
        hit_rates[source.value] = hits / total * 100 if total else 0.0
    count = len(sessions)
    return AccuracySummary(
        sessions=count,
        total_transactions=total,
        hit_rates=hit_rates,
        average_confidence=sum(s.average_confidence for s in sessions) / count if count else 0.0,
        average_processing_time=sum(s.processing_time for s in sessions) / count if count else 0.0,
    )


class CategorizationMonitor:
    """In-memory record of recent categorization sessions."""

    def __init__(self, max_sessions: int = MAX_SESSIONS):
        self.sessions: deque[SessionMetrics] = deque(maxlen=max_sessions)

    def record_session(
        self,
        user_id: str,
        results: list[CategoryDiscoveryResult],
        processing_time: float,
    ) -> SessionMetrics:
        stats = CategorizationStats.from_results(results)
        average_confidence = (
            sum(result.confidence for result in results) / len(results) if results else 0.0
        )
        session = SessionMetrics(
            user_id=user_id,
            stats=stats,
            average_confidence=average_confidence,
            processing_time=processing_time,
        )
        self.sessions.append(session)
        logger.debug(
            "[MONITOR] Recorded session for %s: %s transactions, avg confidence %.2f",
            user_id,
            stats.total,
            average_confidence,
        )
        return session

    def _recent(self, days: int) -> list[SessionMetrics]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        return [session for session in self.sessions if session.timestamp >= cutoff]

    def get_user_metrics(self, user_id: str, days: int = 30) -> AccuracySummary | None:
        sessions = [session for session in self._recent(days) if session.user_id == user_id]
        if not sessions:
            return None
        return _summarize(sessions)

    def get_system_accuracy(self, days: int = 7) -> AccuracySummary:
        return _summarize(self._recent(days))

    def clear_old_metrics(self, days: int = 30) -> int:
        kept = self._recent(days)
        removed = len(self.sessions) - len(kept)
        self.sessions = deque(kept, maxlen=self.sessions.maxlen)
        return removed
