import asyncio
import os
from typing import Any

import httpx

from household_categorizer.errors import (
    ClassifierError,
    ClassifierTimeout,
    MalformedResponseError,
)
from household_categorizer.logger import get_logger

from .base import RemoteClassifier

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def _parse_retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def validate_categories(payload: Any, expected: int) -> list[str]:
    """Check a ``{"categories": [...]}`` payload and return the category list."""
    if not isinstance(payload, dict):
        raise MalformedResponseError("Classifier response is not a JSON object")
    categories = payload.get("categories")
    if not isinstance(categories, list):
        raise MalformedResponseError("Classifier response has no 'categories' list")
    if len(categories) != expected:
        raise MalformedResponseError(
            f"Classifier returned {len(categories)} categories for {expected} descriptions"
        )
    if not all(isinstance(item, str) or item is None for item in categories):
        raise MalformedResponseError("Classifier categories must be strings")
    return [(item or "").strip() for item in categories]


class EdgeFunctionClassifier(RemoteClassifier):
    """Client for the hosted ``categorize-transaction`` function in batch mode."""

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        self.url = url or os.getenv("CLASSIFIER_URL")
        self.api_key = api_key or os.getenv("CLASSIFIER_KEY")
        self.headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            self.headers["Authorization"] = f"Bearer {self.api_key}"
        self.timeout = timeout if timeout is not None else DEFAULT_TIMEOUT_SECONDS
        self._client = client
        self._client_lock = asyncio.Lock()

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

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def classify_batch(self, descriptions: list[str]) -> list[str]:
        if not self.url:
            raise ClassifierError("Classifier URL is not configured")
        if not descriptions:
            return []

        client = await self._get_client()
        try:
            response = await client.post(
                self.url,
                headers=self.headers,
                json={"batchMode": True, "descriptions": descriptions},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise ClassifierTimeout(f"Classifier timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ClassifierError(f"Classifier request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ClassifierError(
                f"Classifier returned HTTP {response.status_code}",
                status_code=response.status_code,
                retry_after=_parse_retry_after(response),
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponseError("Classifier response is not valid JSON") from exc

        return validate_categories(payload, len(descriptions))
