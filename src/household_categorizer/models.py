from collections import Counter
from datetime import date as Date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

UNCATEGORIZED = "Uncategorized"


class CategorizationSource(str, Enum):
    USER_HISTORY = "user_history"
    USER_RULE = "user_rule"
    SYSTEM_RULE = "system_rule"
    # Only found on rows written by older imports; no tier produces it.
    SYSTEM_KEYWORDS = "system_keywords"
    AI = "ai"
    FALLBACK = "fallback"
    UNCATEGORIZED = "uncategorized"

    @classmethod
    def parse(cls, value: str | None) -> "CategorizationSource | None":
        if not value:
            return None
        if value == "keyword_match":
            return cls.SYSTEM_KEYWORDS
        try:
            return cls(value)
        except ValueError:
            return None


class CategoryGroup(str, Enum):
    INCOME = "Income"
    EXPENSE = "Expense"
    TRANSFER = "Transfer"
    OTHER = "Other"


class TransferDirection(str, Enum):
    IN = "in"
    OUT = "out"


class Transaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str
    amount: Decimal
    date: Date
    currency: str = "AUD"
    category: str | None = None
    comment: str | None = None
    asset_account_id: str | None = None
    liability_account_id: str | None = None


class CategorizationRule(BaseModel):
    pattern: str
    category: str = Field(min_length=1)
    confidence: float = Field(gt=0.0, le=1.0)


class HistoricalTransaction(BaseModel):
    description: str
    category: str
    date: Date | None = None
    source: CategorizationSource | None = None


class CategoryDiscoveryResult(BaseModel):
    category: str
    confidence: float = Field(gt=0.0, le=1.0)
    is_new_category: bool = False
    source: CategorizationSource
    group_name: CategoryGroup = CategoryGroup.OTHER
    transfer_direction: TransferDirection | None = None


class CategorizationStats(BaseModel):
    user_history: int = 0
    user_rule: int = 0
    system_rule: int = 0
    system_keywords: int = 0
    ai: int = 0
    fallback: int = 0
    uncategorized: int = 0
    total: int = 0

    @classmethod
    def from_results(cls, results: list[CategoryDiscoveryResult]) -> "CategorizationStats":
        counts = Counter(result.source.value for result in results)
        return cls(total=len(results), **counts)

    def share(self, source: CategorizationSource) -> float:
        if not self.total:
            return 0.0
        return getattr(self, source.value) / self.total * 100


def uncategorized_result() -> CategoryDiscoveryResult:
    return CategoryDiscoveryResult(
        category=UNCATEGORIZED,
        confidence=0.5,
        source=CategorizationSource.UNCATEGORIZED,
        group_name=CategoryGroup.OTHER,
    )
