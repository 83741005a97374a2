from dataclasses import dataclass

from household_categorizer.domain.transactions import build_transaction_row
from household_categorizer.integration.backend import BackendClient
from household_categorizer.logger import get_logger
from household_categorizer.manager import SmartCategorizer
from household_categorizer.models import CategoryDiscoveryResult, Transaction

logger = get_logger(__name__)


@dataclass(frozen=True)
class ImportSummary:
    success: int
    failed: int
    categories_discovered: int
    new_categories_created: int


class TransactionProcessor:
    """Categorizes an imported file's rows and writes them back to storage."""

    def __init__(self, categorizer: SmartCategorizer, backend: BackendClient):
        self.categorizer = categorizer
        self.backend = backend
        self.user_id = categorizer.user_id

    async def resolve_category_id(
        self,
        result: CategoryDiscoveryResult,
        cache: dict[str, str | None],
    ) -> tuple[str | None, bool]:
        """Return the stored id for the result's category and whether it was created."""
        name = result.category
        if name in cache:
            return cache[name], False

        category_id = await self.backend.find_category_id(self.user_id, name)
        created = False
        if category_id is None and result.is_new_category:
            category_id = await self.backend.create_category(self.user_id, name)
            created = True
            logger.info("[IMPORT] Created category '%s' for %s", name, self.user_id)
        cache[name] = category_id
        return category_id, created

    async def process_import(self, transactions: list[Transaction]) -> ImportSummary:
        results = await self.categorizer.categorize_transactions(transactions)

        success = 0
        failed = 0
        created_count = 0
        category_ids: dict[str, str | None] = {}

        for transaction, result in zip(transactions, results):
            if not transaction.asset_account_id and not transaction.liability_account_id:
                logger.error("[IMPORT] No account reference for '%s'", transaction.description)
                failed += 1
                continue
            try:
                category_id, created = await self.resolve_category_id(result, category_ids)
                if created:
                    created_count += 1
                await self.backend.insert_transaction(build_transaction_row(
                    transaction,
                    result,
                    user_id=self.user_id,
                    category_id=category_id,
                ))
                success += 1
            except Exception as exc:
                logger.error("[IMPORT] Failed to store '%s': %s", transaction.description, exc)
                failed += 1

        logger.info("[IMPORT] Stored %s transactions, %s failed", success, failed)
        return ImportSummary(
            success=success,
            failed=failed,
            categories_discovered=len(results),
            new_categories_created=created_count,
        )
