from household_categorizer.logger import get_logger
from household_categorizer.models import (
    CategorizationRule,
    CategorizationSource,
    CategoryDiscoveryResult,
    Transaction,
)

from .base import Classifier
from .pattern import PatternMatcher

logger = get_logger(__name__)


class RuleMatcher(Classifier):
    source: CategorizationSource

    def __init__(self, rules: list[CategorizationRule]):
        # Expected pre-sorted by descending confidence, so the first hit is the best one.
        self.rules = rules

    def match(self, transaction: Transaction) -> CategorizationRule | None:
        for rule in self.rules:
            if PatternMatcher.matches(transaction.description, rule.pattern):
                logger.debug(
                    "[RULES] %s matched '%s' -> '%s' (confidence: %.2f)",
                    self.source.value,
                    rule.pattern,
                    rule.category,
                    rule.confidence,
                )
                return rule
        return None

    def categorize(self, transaction: Transaction) -> str | None:
        rule = self.match(transaction)
        return rule.category if rule else None

    def classify(self, transaction: Transaction) -> CategoryDiscoveryResult | None:
        rule = self.match(transaction)
        if rule is None:
            return None
        return CategoryDiscoveryResult(
            category=rule.category,
            confidence=rule.confidence,
            source=self.source,
        )


class UserRuleMatcher(RuleMatcher):
    source = CategorizationSource.USER_RULE


class SystemRuleMatcher(RuleMatcher):
    source = CategorizationSource.SYSTEM_RULE
