import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from household_categorizer.integration.backend import BackendClient
from household_categorizer.logger import get_logger
from household_categorizer.models import CategorizationRule

logger = get_logger(__name__)

T = TypeVar("T")


def sort_rules(rules: list[CategorizationRule]) -> list[CategorizationRule]:
    # Stable: rules with equal confidence keep their stored order.
    return sorted(rules, key=lambda rule: rule.confidence, reverse=True)


class RuleStore:
    """
    Loads the user's rules, the shared system rules and the system
    category groups, caching each after its first successful load.

    A failed load returns an empty collection and is not cached, so the
    next call tries the backend again.
    """

    def __init__(self, backend: BackendClient, user_id: str):
        self.backend = backend
        self.user_id = user_id
        self._lock = asyncio.Lock()
        self._user_rules: list[CategorizationRule] | None = None
        self._system_rules: list[CategorizationRule] | None = None
        self._system_categories: dict[str, str] | None = None

    async def _load(self, label: str, fetch: Callable[[], Awaitable[T]]) -> T | None:
        try:
            return await fetch()
        except Exception as exc:
            logger.error("[RULES] Failed to load %s: %s", label, exc)
            return None

    async def load_user_rules(self) -> list[CategorizationRule]:
        async with self._lock:
            if self._user_rules is None:
                rules = await self._load(
                    "user rules", lambda: self.backend.get_user_rules(self.user_id)
                )
                if rules is None:
                    return []
                self._user_rules = sort_rules(rules)
                logger.info("[RULES] Loaded %s user rules for %s", len(rules), self.user_id)
            return self._user_rules

    async def load_system_rules(self) -> list[CategorizationRule]:
        async with self._lock:
            if self._system_rules is None:
                rules = await self._load("system rules", self.backend.get_system_rules)
                if rules is None:
                    return []
                self._system_rules = sort_rules(rules)
                logger.info("[RULES] Loaded %s system rules", len(rules))
            return self._system_rules

    async def load_system_categories(self) -> dict[str, str]:
        async with self._lock:
            if self._system_categories is None:
                categories = await self._load("system categories", self.backend.get_system_categories)
                if categories is None:
                    return {}
                self._system_categories = categories
            return self._system_categories

    def clear_cache(self) -> None:
        self._user_rules = None
        self._system_rules = None
        self._system_categories = None
        logger.info("[RULES] Rule cache cleared for %s", self.user_id)
