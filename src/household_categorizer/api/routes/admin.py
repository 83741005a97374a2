from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from household_categorizer.api.dependencies import get_monitor, get_registry
from household_categorizer.api.schemas import CacheClearResponse, MetricsResponse
from household_categorizer.manager import CategorizerRegistry
from household_categorizer.services.monitor import AccuracySummary, CategorizationMonitor

router = APIRouter()


def _to_response(summary: AccuracySummary) -> MetricsResponse:
    return MetricsResponse(
        sessions=summary.sessions,
        total_transactions=summary.total_transactions,
        hit_rates=summary.hit_rates,
        average_confidence=summary.average_confidence,
        average_processing_time=summary.average_processing_time,
    )


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/users/{user_id}/rules/refresh", response_model=CacheClearResponse)
async def refresh_rules(
    user_id: str,
    registry: Annotated[CategorizerRegistry, Depends(get_registry)],
) -> CacheClearResponse:
    return CacheClearResponse(cleared=registry.clear_cache(user_id))


@router.get("/users/{user_id}/metrics", response_model=MetricsResponse)
async def user_metrics(
    user_id: str,
    monitor: Annotated[CategorizationMonitor, Depends(get_monitor)],
    days: Annotated[int, Query(ge=1)] = 30,
) -> MetricsResponse:
    summary = monitor.get_user_metrics(user_id, days=days)
    if summary is None:
        raise HTTPException(status_code=404, detail="No categorization sessions recorded")
    return _to_response(summary)


@router.get("/metrics/system", response_model=MetricsResponse)
async def system_metrics(
    monitor: Annotated[CategorizationMonitor, Depends(get_monitor)],
    days: Annotated[int, Query(ge=1)] = 7,
) -> MetricsResponse:
    return _to_response(monitor.get_system_accuracy(days=days))
