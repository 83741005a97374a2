import asyncio
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import TypeVar

from household_categorizer.classifiers.base import RemoteClassifier
from household_categorizer.classifiers.fallback import FallbackCategorizer
from household_categorizer.errors import ClassifierError, MalformedResponseError
from household_categorizer.logger import get_logger
from household_categorizer.models import (
    UNCATEGORIZED,
    CategorizationSource,
    CategoryDiscoveryResult,
    Transaction,
)

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_CHUNK_SIZE = 15


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    if size < 1:
        raise ValueError("chunk size must be at least 1")
    return [items[start:start + size] for start in range(0, len(items), size)]


class BatchRunner:
    """
    Sends transactions to the remote classifier in fixed-size chunks.

    Each chunk gets ``max_attempts`` tries with exponential backoff and a
    longer wait on rate limiting. A chunk that never succeeds resolves
    through the fallback categorizer; other chunks are unaffected.
    """

    def __init__(
        self,
        classifier: RemoteClassifier,
        fallback: FallbackCategorizer | None = None,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        rate_limit_multiplier: float = 2.0,
        max_concurrency: int = 1,
        ai_confidence: float = 0.75,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.classifier = classifier
        self.fallback = fallback or FallbackCategorizer()
        self.chunk_size = chunk_size
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.rate_limit_multiplier = rate_limit_multiplier
        self.max_concurrency = max_concurrency
        self.ai_confidence = ai_confidence
        self.sleep = sleep

    def backoff_delay(self, attempt: int, error: Exception | None = None) -> float:
        """Delay before retrying after the given zero-based failed attempt."""
        delay = self.base_delay * (2 ** attempt)
        if isinstance(error, ClassifierError):
            if error.rate_limited:
                delay *= self.rate_limit_multiplier
            if error.retry_after is not None:
                delay = max(delay, error.retry_after)
        return delay

    async def _classify_with_retry(self, descriptions: list[str], chunk_number: int) -> list[str] | None:
        for attempt in range(self.max_attempts):
            try:
                categories = await self.classifier.classify_batch(descriptions)
                if len(categories) != len(descriptions):
                    raise MalformedResponseError(
                        f"got {len(categories)} categories for {len(descriptions)} descriptions"
                    )
                return categories
            except Exception as exc:
                remaining = self.max_attempts - attempt - 1
                logger.warning(
                    "[BATCH] Chunk %s attempt %s/%s failed: %s",
                    chunk_number,
                    attempt + 1,
                    self.max_attempts,
                    exc,
                )
                if remaining:
                    await self.sleep(self.backoff_delay(attempt, exc))
        return None

    def _ai_result(self, category: str, known_categories: dict[str, str]) -> CategoryDiscoveryResult:
        # Known names are keyed by casefold so "groceries" resolves to the stored "Groceries".
        canonical = known_categories.get(category.casefold())
        return CategoryDiscoveryResult(
            category=canonical or category,
            confidence=self.ai_confidence,
            is_new_category=canonical is None,
            source=CategorizationSource.AI,
        )

    async def _run_chunk(
        self,
        chunk: Sequence[Transaction],
        chunk_number: int,
        known_categories: dict[str, str],
    ) -> list[CategoryDiscoveryResult]:
        categories = await self._classify_with_retry(
            [transaction.description for transaction in chunk], chunk_number
        )
        if categories is None:
            logger.error(
                "[BATCH] Chunk %s exhausted %s attempts; %s transactions use fallback rules",
                chunk_number,
                self.max_attempts,
                len(chunk),
            )
            return [self.fallback.classify(transaction) for transaction in chunk]

        results = []
        for transaction, category in zip(chunk, categories):
            if category and category.casefold() != UNCATEGORIZED.casefold():
                results.append(self._ai_result(category, known_categories))
            else:
                results.append(self.fallback.classify(transaction))
        return results

    async def run(
        self,
        transactions: Sequence[Transaction],
        known_categories: Iterable[str] = (),
    ) -> list[CategoryDiscoveryResult]:
        if not transactions:
            return []

        known = {name.casefold(): name for name in known_categories}
        chunks = chunked(transactions, self.chunk_size)
        logger.info(
            "[BATCH] Classifying %s transactions in %s chunks of up to %s",
            len(transactions),
            len(chunks),
            self.chunk_size,
        )

        if self.max_concurrency <= 1:
            chunk_results = []
            for number, chunk in enumerate(chunks, start=1):
                chunk_results.append(await self._run_chunk(chunk, number, known))
        else:
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def limited(chunk: Sequence[Transaction], number: int) -> list[CategoryDiscoveryResult]:
                async with semaphore:
                    return await self._run_chunk(chunk, number, known)

            chunk_results = await asyncio.gather(
                *(limited(chunk, number) for number, chunk in enumerate(chunks, start=1))
            )

        return [result for results in chunk_results for result in results]
