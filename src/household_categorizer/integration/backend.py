import asyncio
import os
from typing import Any

import httpx

from household_categorizer.domain.transactions import (
    parse_history_rows,
    parse_rule_rows,
    parse_system_category_rows,
)
from household_categorizer.errors import BackendError
from household_categorizer.logger import get_logger
from household_categorizer.models import CategorizationRule, HistoricalTransaction

logger = get_logger(__name__)


class BackendClient:
    """
    Read/write access to the hosted Postgres tables through their REST
    gateway (PostgREST query syntax).

    Every method raises ``BackendError`` on failure; deciding how to
    degrade is left to the caller.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.base_url = (base_url or os.getenv("BACKEND_URL") or "").rstrip("/") or None
        self.api_key = api_key or os.getenv("BACKEND_KEY")
        self.headers = {
            "apikey": self.api_key or "",
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self.timeout = timeout
        self._client = client
        self._client_lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client

        async with self._client_lock:
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient()
                self._client = client
            return client

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        if not self.configured:
            raise BackendError("Backend credentials missing")

        client = await self._get_client()
        try:
            response = await client.request(
                method,
                f"{self.base_url}/rest/v1/{table}",
                headers={**self.headers, **(headers or {})},
                params=params,
                json=json,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise BackendError(
                f"{method} {table} failed with HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"{method} {table} failed: {exc}") from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(f"{method} {table} returned invalid JSON") from exc

    async def get_user_rules(self, user_id: str) -> list[CategorizationRule]:
        rows = await self._request(
            "GET",
            "user_categorization_rules",
            params={
                "select": "pattern,category,confidence",
                "user_id": f"eq.{user_id}",
                "order": "confidence.desc",
            },
        )
        return parse_rule_rows(rows or [])

    async def get_system_rules(self) -> list[CategorizationRule]:
        rows = await self._request(
            "GET",
            "system_categorization_rules",
            params={
                "select": "pattern,category,confidence",
                "is_active": "eq.true",
                "order": "confidence.desc",
            },
        )
        return parse_rule_rows(rows or [])

    async def get_system_categories(self) -> dict[str, str]:
        rows = await self._request(
            "GET",
            "categories",
            params={"select": "name,category_groups(name)", "is_system": "eq.true"},
        )
        return parse_system_category_rows(rows or [])

    async def get_categorized_history(self, user_id: str, limit: int = 100) -> list[HistoricalTransaction]:
        rows = await self._request(
            "GET",
            "transactions",
            params={
                "select": "description,date,categorization_source,categories(name)",
                "user_id": f"eq.{user_id}",
                "category_id": "not.is.null",
                "order": "date.desc",
                "limit": limit,
            },
        )
        return parse_history_rows(rows or [])

    async def find_category_id(self, user_id: str, name: str) -> str | None:
        rows = await self._request(
            "GET",
            "categories",
            params={"select": "id", "user_id": f"eq.{user_id}", "name": f"eq.{name}", "limit": 1},
        )
        if rows:
            return str(rows[0]["id"])
        return None

    async def create_category(self, user_id: str, name: str) -> str:
        rows = await self._request(
            "POST",
            "categories",
            json={"user_id": user_id, "name": name},
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise BackendError(f"Creating category '{name}' returned no row")
        return str(rows[0]["id"])

    async def insert_transaction(self, row: dict[str, Any]) -> None:
        await self._request("POST", "transactions", json=row)
