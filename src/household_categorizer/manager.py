from collections import OrderedDict
from time import perf_counter

from household_categorizer.classifiers.base import RemoteClassifier
from household_categorizer.classifiers.fallback import FallbackCategorizer
from household_categorizer.classifiers.history import UserHistoryMatcher
from household_categorizer.classifiers.rules import SystemRuleMatcher, UserRuleMatcher
from household_categorizer.core.settings import CategorizerConfig
from household_categorizer.domain.transfers import transfer_direction
from household_categorizer.integration.backend import BackendClient
from household_categorizer.logger import get_logger
from household_categorizer.models import (
    CategorizationSource,
    CategorizationStats,
    CategoryDiscoveryResult,
    HistoricalTransaction,
    Transaction,
    uncategorized_result,
)
from household_categorizer.services.batch import BatchRunner
from household_categorizer.services.groups import CategoryGroupHelper
from household_categorizer.services.monitor import CategorizationMonitor
from household_categorizer.services.rules import RuleStore

logger = get_logger(__name__)


class SmartCategorizer:
    """
    Resolves a category for each imported transaction of one user.

    Tiers run in a fixed order and the first hit wins: user history, user
    rules, system rules, then the remote classifier for whatever is left,
    with the offline fallback behind it. ``categorize_transactions`` always
    returns one result per input, in input order, and never raises.
    """

    def __init__(
        self,
        user_id: str,
        backend: BackendClient,
        classifier: RemoteClassifier | None = None,
        config: CategorizerConfig | None = None,
        monitor: CategorizationMonitor | None = None,
        rule_store: RuleStore | None = None,
        fallback: FallbackCategorizer | None = None,
        batch_runner: BatchRunner | None = None,
    ):
        self.user_id = user_id
        self.config = config or CategorizerConfig()
        self.monitor = monitor
        self.rule_store = rule_store or RuleStore(backend, user_id)
        self.history_matcher = UserHistoryMatcher(backend, user_id, limit=self.config.history_limit)
        self.fallback = fallback or FallbackCategorizer()
        self.batch_runner = batch_runner
        if self.batch_runner is None and classifier is not None:
            self.batch_runner = BatchRunner(
                classifier,
                self.fallback,
                chunk_size=self.config.chunk_size,
                max_attempts=self.config.max_attempts,
                base_delay=self.config.retry_base_delay,
                rate_limit_multiplier=self.config.rate_limit_multiplier,
                max_concurrency=self.config.max_concurrency,
                ai_confidence=self.config.ai_confidence,
            )
        self.last_stats: CategorizationStats | None = None

    def clear_cache(self) -> None:
        self.rule_store.clear_cache()

    def _match_locally(
        self,
        transaction: Transaction,
        history: list[HistoricalTransaction],
        user_rules: UserRuleMatcher,
        system_rules: SystemRuleMatcher,
    ) -> CategoryDiscoveryResult | None:
        if self.config.enable_user_history:
            result = self.history_matcher.find_similar_transaction(transaction, history)
            if result:
                return result
        if self.config.enable_user_rules:
            result = user_rules.classify(transaction)
            if result:
                return result
        if self.config.enable_system_rules:
            result = system_rules.classify(transaction)
            if result:
                return result
        return None

    async def _resolve_remaining(
        self,
        pending: list[Transaction],
        known_categories: set[str],
    ) -> list[CategoryDiscoveryResult]:
        if self.config.enable_ai_fallback and self.batch_runner is not None:
            return await self.batch_runner.run(pending, known_categories)
        logger.debug("[CATEGORIZE] AI tier unavailable, %s transactions use fallback rules", len(pending))
        return [self.fallback.classify(transaction) for transaction in pending]

    def _finalize(
        self,
        transaction: Transaction,
        result: CategoryDiscoveryResult,
        groups: CategoryGroupHelper,
    ) -> CategoryDiscoveryResult:
        group = groups.get_group_name(result.category)
        finalized = result.model_copy(update={"group_name": group})
        if self.config.annotate_transfer_direction:
            finalized = finalized.model_copy(
                update={"transfer_direction": transfer_direction(transaction, finalized)}
            )
        return finalized

    async def categorize_transactions(self, transactions: list[Transaction]) -> list[CategoryDiscoveryResult]:
        start = perf_counter()
        results: list[CategoryDiscoveryResult | None] = [None] * len(transactions)
        system_categories: dict[str, str] = {}

        try:
            user_rules = await self.rule_store.load_user_rules() if self.config.enable_user_rules else []
            system_rules = await self.rule_store.load_system_rules() if self.config.enable_system_rules else []
            system_categories = await self.rule_store.load_system_categories()
            history = await self.history_matcher.load_history() if self.config.enable_user_history else []
        except Exception:
            logger.exception("[CATEGORIZE] Could not prepare rules and history; using empty sets")
            user_rules, system_rules, history = [], [], []

        user_matcher = UserRuleMatcher(user_rules)
        system_matcher = SystemRuleMatcher(system_rules)

        pending: list[int] = []
        for index, transaction in enumerate(transactions):
            try:
                result = self._match_locally(transaction, history, user_matcher, system_matcher)
            except Exception:
                logger.exception("[CATEGORIZE] Matching failed for '%s'", transaction.description[:50])
                result = uncategorized_result()
            if result is None:
                pending.append(index)
            else:
                results[index] = result

        if pending:
            known = set(system_categories)
            known.update(rule.category for rule in user_rules)
            known.update(rule.category for rule in system_rules)
            known.update(past.category for past in history)
            try:
                resolved = await self._resolve_remaining([transactions[i] for i in pending], known)
                if len(resolved) != len(pending):
                    raise RuntimeError(f"expected {len(pending)} results, got {len(resolved)}")
            except Exception:
                logger.exception("[CATEGORIZE] Remote tier failed for %s transactions", len(pending))
                resolved = [uncategorized_result() for _ in pending]
            for index, result in zip(pending, resolved):
                results[index] = result

        groups = CategoryGroupHelper(system_categories)
        final: list[CategoryDiscoveryResult] = []
        for transaction, result in zip(transactions, results):
            try:
                final.append(self._finalize(transaction, result or uncategorized_result(), groups))
            except Exception:
                logger.exception("[CATEGORIZE] Could not finalize result for '%s'", transaction.description[:50])
                final.append(uncategorized_result())

        elapsed = perf_counter() - start
        self._report(final, elapsed)
        return final

    async def categorize_transaction(self, transaction: Transaction) -> CategoryDiscoveryResult:
        results = await self.categorize_transactions([transaction])
        return results[0]

    def _report(self, results: list[CategoryDiscoveryResult], elapsed: float) -> None:
        stats = CategorizationStats.from_results(results)
        self.last_stats = stats
        logger.info(
            "[CATEGORIZE] %s transactions for %s in %.1f ms: history=%s (%.1f%%) user_rule=%s (%.1f%%) "
            "system_rule=%s (%.1f%%) ai=%s (%.1f%%) fallback=%s (%.1f%%) uncategorized=%s (%.1f%%)",
            stats.total,
            self.user_id,
            elapsed * 1000,
            stats.user_history,
            stats.share(CategorizationSource.USER_HISTORY),
            stats.user_rule,
            stats.share(CategorizationSource.USER_RULE),
            stats.system_rule,
            stats.share(CategorizationSource.SYSTEM_RULE),
            stats.ai,
            stats.share(CategorizationSource.AI),
            stats.fallback,
            stats.share(CategorizationSource.FALLBACK),
            stats.uncategorized,
            stats.share(CategorizationSource.UNCATEGORIZED),
        )
        if self.monitor is not None:
            try:
                self.monitor.record_session(self.user_id, results, elapsed)
            except Exception:
                logger.exception("[CATEGORIZE] Failed to record metrics")


MAX_CACHED_CATEGORIZERS = 256


class CategorizerRegistry:
    """
    One categorizer per user, sharing clients, config and monitor.

    Least recently used categorizers (and their cached rules) are dropped
    once more than ``max_users`` are held.
    """

    def __init__(
        self,
        backend: BackendClient,
        classifier: RemoteClassifier | None = None,
        config: CategorizerConfig | None = None,
        monitor: CategorizationMonitor | None = None,
        max_users: int = MAX_CACHED_CATEGORIZERS,
    ):
        if max_users < 1:
            raise ValueError("max_users must be at least 1")
        self.backend = backend
        self.classifier = classifier
        self.config = config or CategorizerConfig()
        self.monitor = monitor
        self.max_users = max_users
        self._categorizers: OrderedDict[str, SmartCategorizer] = OrderedDict()

    def get(self, user_id: str) -> SmartCategorizer:
        categorizer = self._categorizers.get(user_id)
        if categorizer is None:
            categorizer = SmartCategorizer(
                user_id,
                self.backend,
                classifier=self.classifier,
                config=self.config,
                monitor=self.monitor,
            )
            self._categorizers[user_id] = categorizer
            while len(self._categorizers) > self.max_users:
                evicted, _ = self._categorizers.popitem(last=False)
                logger.debug("[CATEGORIZE] Evicted cached categorizer for %s", evicted)
        else:
            self._categorizers.move_to_end(user_id)
        return categorizer

    def clear_cache(self, user_id: str | None = None) -> int:
        if user_id is not None:
            categorizer = self._categorizers.get(user_id)
            if categorizer is None:
                return 0
            categorizer.clear_cache()
            return 1
        for categorizer in self._categorizers.values():
            categorizer.clear_cache()
        return len(self._categorizers)
