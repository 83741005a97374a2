from pydantic import BaseModel, Field

from household_categorizer.models import CategorizationStats, CategoryDiscoveryResult, Transaction


class CategorizeRequest(BaseModel):
    transactions: list[Transaction] = Field(default_factory=list)


class CategorizeResponse(BaseModel):
    results: list[CategoryDiscoveryResult]
    stats: CategorizationStats


class ImportResponse(BaseModel):
    success: int
    failed: int
    categories_discovered: int
    new_categories_created: int


class CacheClearResponse(BaseModel):
    cleared: int


class MetricsResponse(BaseModel):
    sessions: int
    total_transactions: int
    hit_rates: dict[str, float]
    average_confidence: float
    average_processing_time: float
