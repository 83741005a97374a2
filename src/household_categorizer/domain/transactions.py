from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import ValidationError

from household_categorizer.logger import get_logger
from household_categorizer.models import (
    CategorizationRule,
    CategorizationSource,
    CategoryDiscoveryResult,
    HistoricalTransaction,
    Transaction,
)

logger = get_logger(__name__)


def parse_date(value: str | date | None) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def _embedded_name(value: Any) -> str | None:
    # PostgREST returns embedded relations as an object or a one-element list.
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        name = value.get("name")
        if isinstance(name, str) and name.strip():
            return name.strip()
    return None


def parse_rule_rows(rows: list[dict[str, Any]]) -> list[CategorizationRule]:
    rules: list[CategorizationRule] = []
    for row in rows:
        try:
            rule = CategorizationRule(
                pattern=str(row.get("pattern") or ""),
                category=str(row.get("category") or "").strip(),
                confidence=float(row.get("confidence") or 0.0),
            )
        except (ValidationError, TypeError, ValueError) as exc:
            logger.warning("[RULES] Skipping invalid rule row %s: %s", row, exc)
            continue
        if not rule.pattern.strip():
            logger.warning("[RULES] Skipping rule with empty pattern -> '%s'", rule.category)
            continue
        rules.append(rule)
    return rules


def parse_system_category_rows(rows: list[dict[str, Any]]) -> dict[str, str]:
    categories: dict[str, str] = {}
    for row in rows:
        name = row.get("name")
        if not name:
            continue
        categories[str(name)] = _embedded_name(row.get("category_groups")) or "Expense"
    return categories


def parse_history_rows(rows: list[dict[str, Any]]) -> list[HistoricalTransaction]:
    history: list[HistoricalTransaction] = []
    for row in rows:
        category = _embedded_name(row.get("categories"))
        description = row.get("description")
        if not category or not description:
            continue
        history.append(HistoricalTransaction(
            description=str(description),
            category=category,
            date=parse_date(row.get("date")),
            source=CategorizationSource.parse(row.get("categorization_source")),
        ))
    return history


def build_transaction_row(
    transaction: Transaction,
    result: CategoryDiscoveryResult,
    *,
    user_id: str,
    category_id: str | None,
) -> dict[str, Any]:
    return {
        "date": transaction.date.isoformat(),
        "description": transaction.description,
        "amount": str(transaction.amount),
        "asset_account_id": transaction.asset_account_id,
        "liability_account_id": transaction.liability_account_id,
        "category_id": category_id,
        "type": "income" if transaction.amount >= 0 else "expense",
        "currency": transaction.currency,
        "notes": transaction.comment,
        "user_id": user_id,
        "categorization_source": result.source.value,
        "categorization_confidence": result.confidence,
    }
