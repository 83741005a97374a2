from typing import Annotated

from fastapi import APIRouter, Depends

from household_categorizer.api.dependencies import get_backend, get_registry
from household_categorizer.api.schemas import CategorizeRequest, CategorizeResponse, ImportResponse
from household_categorizer.integration.backend import BackendClient
from household_categorizer.manager import CategorizerRegistry
from household_categorizer.models import CategorizationStats
from household_categorizer.services.processing import TransactionProcessor

router = APIRouter(prefix="/users/{user_id}")


@router.post("/categorize", response_model=CategorizeResponse)
async def categorize_transactions(
    user_id: str,
    req: CategorizeRequest,
    registry: Annotated[CategorizerRegistry, Depends(get_registry)],
) -> CategorizeResponse:
    categorizer = registry.get(user_id)
    results = await categorizer.categorize_transactions(req.transactions)
    return CategorizeResponse(
        results=results,
        stats=categorizer.last_stats or CategorizationStats.from_results(results),
    )


@router.post("/import", response_model=ImportResponse)
async def import_transactions(
    user_id: str,
    req: CategorizeRequest,
    registry: Annotated[CategorizerRegistry, Depends(get_registry)],
    backend: Annotated[BackendClient, Depends(get_backend)],
) -> ImportResponse:
    processor = TransactionProcessor(registry.get(user_id), backend)
    summary = await processor.process_import(req.transactions)
    return ImportResponse(
        success=summary.success,
        failed=summary.failed,
        categories_discovered=summary.categories_discovered,
        new_categories_created=summary.new_categories_created,
    )
