import re
from typing import TYPE_CHECKING

from rapidfuzz.distance import Levenshtein

from household_categorizer.logger import get_logger
from household_categorizer.models import (
    CategorizationSource,
    CategoryDiscoveryResult,
    HistoricalTransaction,
    Transaction,
)

if TYPE_CHECKING:
    from household_categorizer.integration.backend import BackendClient

logger = get_logger(__name__)

MATCH_THRESHOLD = 0.7
FUZZY_FLOOR = 0.6
MAX_CONFIDENCE = 0.95
CONFIDENCE_BOOST = 0.1

# "WOOLWORTHS 1234", "UBER *EATS", "ACME PAYMENT", "ACME DIRECT DEBIT"
_MERCHANT_PATTERNS = (
    re.compile(r"^([a-z][a-z\s]*?)\s+\d"),
    re.compile(r"^([a-z][a-z\s]*?)\s*\*"),
    re.compile(r"^([a-z][a-z\s]*?)\s+payment\b"),
    re.compile(r"^([a-z][a-z\s]*?)\s+direct\b"),
)


def normalize_description(text: str) -> str:
    text = re.sub(r"[^\w\s]", " ", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def extract_merchant_name(description: str) -> str | None:
    lowered = re.sub(r"\s+", " ", description.lower()).strip()
    for pattern in _MERCHANT_PATTERNS:
        match = pattern.match(lowered)
        if match:
            merchant = match.group(1).strip()
            if merchant:
                return merchant
    return None


def calculate_similarity(first: str, second: str) -> float:
    norm_first = normalize_description(first)
    norm_second = normalize_description(second)
    if not norm_first or not norm_second:
        return 0.0

    if norm_first == norm_second:
        return 1.0

    merchant_first = extract_merchant_name(first)
    if merchant_first and merchant_first == extract_merchant_name(second):
        return 0.9

    if norm_first in norm_second or norm_second in norm_first:
        return 0.8

    distance = Levenshtein.distance(norm_first, norm_second)
    similarity = 1 - distance / max(len(norm_first), len(norm_second))
    return similarity if similarity > FUZZY_FLOOR else 0.0


class UserHistoryMatcher:
    """
    Reuses the category of the user's most recent similar transaction.

    History is scanned most-recent-first, so among equally good candidates
    the newest correction wins.
    """

    def __init__(self, backend: "BackendClient", user_id: str, limit: int = 100):
        self.backend = backend
        self.user_id = user_id
        self.limit = limit

    async def load_history(self) -> list[HistoricalTransaction]:
        try:
            history = await self.backend.get_categorized_history(self.user_id, limit=self.limit)
        except Exception as exc:
            logger.error("[HISTORY] Could not load history for user %s: %s", self.user_id, exc)
            return []
        logger.debug("[HISTORY] Loaded %s categorized transactions", len(history))
        return history

    def find_similar_transaction(
        self,
        transaction: Transaction,
        history: list[HistoricalTransaction],
    ) -> CategoryDiscoveryResult | None:
        for past in history:
            similarity = calculate_similarity(transaction.description, past.description)
            if similarity > MATCH_THRESHOLD:
                logger.debug(
                    "[HISTORY] '%s' ~ '%s' -> '%s' (similarity: %.2f)",
                    transaction.description,
                    past.description,
                    past.category,
                    similarity,
                )
                return CategoryDiscoveryResult(
                    category=past.category,
                    confidence=min(similarity + CONFIDENCE_BOOST, MAX_CONFIDENCE),
                    source=CategorizationSource.USER_HISTORY,
                )
        return None
