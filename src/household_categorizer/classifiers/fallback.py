from household_categorizer.models import (
    UNCATEGORIZED,
    CategorizationSource,
    CategoryDiscoveryResult,
    Transaction,
    uncategorized_result,
)

from .base import Classifier
from .pattern import PatternMatcher

FALLBACK_CONFIDENCE = 0.6

# Order matters: the first row with a matching keyword wins.
FALLBACK_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("transfer", "payid", "bpay"), "Transfers"),
    (("atm", "withdrawal", "cash"), "Cash Withdrawal"),
    (("woolworths", "coles", "aldi", "iga"), "Supermarket"),
    (("uber", "opal", "transport"), "Transport"),
)


class FallbackCategorizer(Classifier):
    """Offline last resort. Always answers, defaulting to ``Uncategorized``."""

    def __init__(self, rules: tuple[tuple[tuple[str, ...], str], ...] = FALLBACK_RULES):
        self.rules = rules

    def categorize(self, transaction: Transaction) -> str:
        description = transaction.description or ""
        for keywords, category in self.rules:
            if any(PatternMatcher.matches(description, keyword) for keyword in keywords):
                return category
        return UNCATEGORIZED

    def classify(self, transaction: Transaction) -> CategoryDiscoveryResult:
        category = self.categorize(transaction)
        if category == UNCATEGORIZED:
            return uncategorized_result()
        return CategoryDiscoveryResult(
            category=category,
            confidence=FALLBACK_CONFIDENCE,
            source=CategorizationSource.FALLBACK,
        )
