from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_transaction, past, rule

from household_categorizer.core.settings import CategorizerConfig
from household_categorizer.errors import BackendError, ClassifierError
from household_categorizer.manager import CategorizerRegistry, SmartCategorizer
from household_categorizer.models import CategorizationSource, CategoryGroup, TransferDirection
from household_categorizer.services.monitor import CategorizationMonitor


def _classifier(side_effect=None) -> AsyncMock:
    classifier = AsyncMock()
    classifier.classify_batch.side_effect = side_effect or (lambda d: ["Groceries"] * len(d))
    return classifier


def _categorizer(backend: AsyncMock, classifier: AsyncMock | None = None, **config) -> SmartCategorizer:
    categorizer = SmartCategorizer(
        "user-1",
        backend,
        classifier=classifier,
        config=CategorizerConfig(**config),
        monitor=CategorizationMonitor(),
    )
    if categorizer.batch_runner is not None:
        categorizer.batch_runner.sleep = AsyncMock()
    return categorizer


@pytest.mark.anyio
async def test_ai_tier_when_nothing_else_matches(backend: AsyncMock) -> None:
    categorizer = _categorizer(backend, _classifier())

    result = await categorizer.categorize_transaction(make_transaction("WOOLWORTHS 1234"))

    assert result.category == "Groceries"
    assert result.source == CategorizationSource.AI
    assert result.is_new_category is True


@pytest.mark.anyio
async def test_system_rule_hit_skips_remote_classifier(backend: AsyncMock) -> None:
    backend.get_system_rules.return_value = [rule("uber eats", "Food Delivery", 0.85)]
    classifier = _classifier()
    categorizer = _categorizer(backend, classifier)

    result = await categorizer.categorize_transaction(make_transaction("UBER *EATS"))

    assert result.category == "Food Delivery"
    assert result.source == CategorizationSource.SYSTEM_RULE
    assert result.confidence == 0.85
    classifier.classify_batch.assert_not_awaited()


@pytest.mark.anyio
async def test_user_history_hit(backend: AsyncMock) -> None:
    backend.get_categorized_history.return_value = [past("NETFLIX.COM", "Entertainment")]
    categorizer = _categorizer(backend, _classifier())

    result = await categorizer.categorize_transaction(make_transaction("NETFLIX.COM AU"))

    assert result.source == CategorizationSource.USER_HISTORY
    assert result.category == "Entertainment"
    assert result.confidence >= 0.8


@pytest.mark.anyio
async def test_user_rule_beats_system_rule(backend: AsyncMock) -> None:
    backend.get_user_rules.return_value = [rule("gym", "Fitness", 0.5)]
    backend.get_system_rules.return_value = [rule("gym", "Health", 1.0)]
    categorizer = _categorizer(backend, _classifier())

    result = await categorizer.categorize_transaction(make_transaction("ANYTIME GYM 123"))

    assert result.source == CategorizationSource.USER_RULE
    assert result.category == "Fitness"


@pytest.mark.anyio
async def test_history_beats_rules(backend: AsyncMock) -> None:
    backend.get_categorized_history.return_value = [past("ANYTIME GYM 999", "Membership")]
    backend.get_user_rules.return_value = [rule("gym", "Fitness")]
    categorizer = _categorizer(backend, _classifier())

    result = await categorizer.categorize_transaction(make_transaction("ANYTIME GYM 123"))

    assert result.source == CategorizationSource.USER_HISTORY
    assert result.category == "Membership"


@pytest.mark.anyio
async def test_disabled_tier_is_skipped(backend: AsyncMock) -> None:
    backend.get_user_rules.return_value = [rule("gym", "Fitness")]
    backend.get_system_rules.return_value = [rule("gym", "Health")]
    categorizer = _categorizer(backend, _classifier(), enable_user_rules=False)

    result = await categorizer.categorize_transaction(make_transaction("GYM"))

    assert result.source == CategorizationSource.SYSTEM_RULE
    backend.get_user_rules.assert_not_awaited()


@pytest.mark.anyio
async def test_results_are_length_and_order_preserving(backend: AsyncMock) -> None:
    backend.get_system_rules.return_value = [rule("coles", "Groceries")]
    classifier = _classifier(lambda d: [f"AI {text}" for text in d])
    categorizer = _categorizer(backend, classifier)
    transactions = [make_transaction(f"SHOP {i}") for i in range(20)]
    transactions[7] = make_transaction("COLES 7")

    results = await categorizer.categorize_transactions(transactions)

    assert len(results) == 20
    assert results[7].source == CategorizationSource.SYSTEM_RULE
    assert results[0].category == "AI SHOP 0"
    assert results[19].category == "AI SHOP 19"
    # Only the 19 unmatched descriptions went to the classifier.
    sent = [text for call in classifier.classify_batch.await_args_list for text in call.args[0]]
    assert "COLES 7" not in sent
    assert len(sent) == 19


@pytest.mark.anyio
async def test_total_ai_failure_still_returns_everything(backend: AsyncMock) -> None:
    classifier = _classifier(ClassifierError("down", status_code=503))
    categorizer = _categorizer(backend, classifier)
    transactions = [make_transaction(d) for d in ("ATM 1", "QANTAS", "COLES", "NOVEL THING")]

    results = await categorizer.categorize_transactions(transactions)

    assert len(results) == 4
    assert all(r.category for r in results)
    assert all(
        r.source in {CategorizationSource.FALLBACK, CategorizationSource.UNCATEGORIZED} for r in results
    )
    stats = categorizer.last_stats
    assert stats is not None
    assert stats.total == 4
    assert stats.fallback + stats.uncategorized == 4


@pytest.mark.anyio
async def test_backend_outage_degrades_to_lower_tiers(backend: AsyncMock) -> None:
    backend.get_user_rules.side_effect = BackendError("down")
    backend.get_system_rules.side_effect = BackendError("down")
    backend.get_system_categories.side_effect = BackendError("down")
    backend.get_categorized_history.side_effect = BackendError("down")
    categorizer = _categorizer(backend, _classifier())

    result = await categorizer.categorize_transaction(make_transaction("ANYTHING"))

    assert result.source == CategorizationSource.AI


@pytest.mark.anyio
async def test_no_classifier_uses_fallback(backend: AsyncMock) -> None:
    categorizer = _categorizer(backend, classifier=None)

    results = await categorizer.categorize_transactions(
        [make_transaction("TRANSFER TO SAVINGS"), make_transaction("MYSTERY")]
    )

    assert results[0].source == CategorizationSource.FALLBACK
    assert results[0].group_name == CategoryGroup.TRANSFER
    assert results[0].transfer_direction == TransferDirection.OUT
    assert results[1].source == CategorizationSource.UNCATEGORIZED
    assert results[1].group_name == CategoryGroup.OTHER


@pytest.mark.anyio
async def test_unexpected_matching_error_is_contained(backend: AsyncMock) -> None:
    categorizer = _categorizer(backend, _classifier())
    categorizer.history_matcher.find_similar_transaction = MagicMock(side_effect=[RuntimeError("bug"), None])

    results = await categorizer.categorize_transactions(
        [make_transaction("BROKEN"), make_transaction("FINE")]
    )

    assert results[0].source == CategorizationSource.UNCATEGORIZED
    assert results[0].category == "Uncategorized"
    assert results[1].source == CategorizationSource.AI


@pytest.mark.anyio
async def test_batch_runner_crash_is_contained(backend: AsyncMock) -> None:
    categorizer = _categorizer(backend, _classifier())
    categorizer.batch_runner.run = AsyncMock(side_effect=RuntimeError("bug"))

    results = await categorizer.categorize_transactions([make_transaction("A"), make_transaction("B")])

    assert [r.source for r in results] == [CategorizationSource.UNCATEGORIZED] * 2


@pytest.mark.anyio
async def test_known_category_from_system_is_not_new(backend: AsyncMock) -> None:
    backend.get_system_categories.return_value = {"Groceries": "Expense"}
    categorizer = _categorizer(backend, _classifier())

    result = await categorizer.categorize_transaction(make_transaction("WOOLWORTHS 1234"))

    assert result.source == CategorizationSource.AI
    assert result.is_new_category is False
    assert result.group_name == CategoryGroup.EXPENSE


@pytest.mark.anyio
async def test_repeated_runs_are_identical(backend: AsyncMock) -> None:
    backend.get_categorized_history.return_value = [past("SPOTIFY P12345", "Subscriptions")]
    backend.get_system_rules.return_value = [rule("coles", "Groceries", 0.8)]
    categorizer = _categorizer(backend, _classifier())
    transactions = [make_transaction(d) for d in ("SPOTIFY P99999", "COLES 12", "NEW PLACE")]

    first = await categorizer.categorize_transactions(transactions)
    second = await categorizer.categorize_transactions(transactions)

    assert first == second


@pytest.mark.anyio
async def test_session_recorded_in_monitor(backend: AsyncMock) -> None:
    categorizer = _categorizer(backend, classifier=None)

    await categorizer.categorize_transactions([make_transaction("ATM")])

    metrics = categorizer.monitor.get_user_metrics("user-1")
    assert metrics is not None
    assert metrics.total_transactions == 1
    assert metrics.hit_rates["fallback"] == 100.0


@pytest.mark.anyio
async def test_empty_batch(backend: AsyncMock) -> None:
    categorizer = _categorizer(backend, _classifier())

    assert await categorizer.categorize_transactions([]) == []
    assert categorizer.last_stats is not None
    assert categorizer.last_stats.total == 0


def test_registry_reuses_categorizer_per_user(backend: AsyncMock) -> None:
    registry = CategorizerRegistry(backend)

    first = registry.get("user-1")

    assert registry.get("user-1") is first
    assert registry.get("user-2") is not first
    assert registry.clear_cache("user-1") == 1
    assert registry.clear_cache("nobody") == 0
    assert registry.clear_cache() == 2


@pytest.mark.anyio
async def test_uncategorized_ai_answer_uses_fallback(backend: AsyncMock) -> None:
    categorizer = _categorizer(backend, _classifier(lambda d: ["Uncategorized"] * len(d)))

    result = await categorizer.categorize_transaction(make_transaction("WOOLWORTHS 1234"))

    assert result.category == "Supermarket"
    assert result.source == CategorizationSource.FALLBACK
    assert result.is_new_category is False
    assert categorizer.last_stats.ai == 0


@pytest.mark.anyio
async def test_ai_answer_resolves_to_stored_category_spelling(backend: AsyncMock) -> None:
    backend.get_system_categories.return_value = {"Groceries": "Expense"}
    categorizer = _categorizer(backend, _classifier(lambda d: ["groceries"] * len(d)))

    result = await categorizer.categorize_transaction(make_transaction("WOOLWORTHS 1234"))

    assert result.category == "Groceries"
    assert result.is_new_category is False
    assert result.group_name == CategoryGroup.EXPENSE


def test_registry_evicts_least_recently_used(backend: AsyncMock) -> None:
    registry = CategorizerRegistry(backend, max_users=2)

    first = registry.get("user-1")
    registry.get("user-2")
    assert registry.get("user-1") is first
    registry.get("user-3")

    assert registry.get("user-1") is first
    assert registry.clear_cache("user-2") == 0
    assert registry.clear_cache() == 2
