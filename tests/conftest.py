from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from household_categorizer.models import CategorizationRule, HistoricalTransaction, Transaction


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def make_transaction(description: str, amount: str = "-10.00", **kwargs) -> Transaction:
    return Transaction(
        description=description,
        amount=Decimal(amount),
        date=kwargs.pop("date", date(2024, 3, 1)),
        **kwargs,
    )


@pytest.fixture
def backend() -> AsyncMock:
    mock = AsyncMock()
    mock.get_user_rules.return_value = []
    mock.get_system_rules.return_value = []
    mock.get_system_categories.return_value = {}
    mock.get_categorized_history.return_value = []
    return mock


def rule(pattern: str, category: str, confidence: float = 0.9) -> CategorizationRule:
    return CategorizationRule(pattern=pattern, category=category, confidence=confidence)


def past(description: str, category: str) -> HistoricalTransaction:
    return HistoricalTransaction(description=description, category=category)
