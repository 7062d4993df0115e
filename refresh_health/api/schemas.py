from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

TableStatus = Literal["active", "stale", "error", "disabled"]


class TableMetricsBlock(BaseModel):
    last_refresh: datetime | None
    next_refresh: datetime | None
    refresh_frequency_hours: float
    rows_count: int | None = None
    avg_refresh_duration_minutes: int | None = None
    success_rate_7d: int | None = Field(default=None, ge=0, le=100)
    last_error: str | None = None
    data_freshness_hours: int | None = None


class RefreshTimePoint(BaseModel):
    date: datetime
    duration_minutes: int


class SuccessRatePoint(BaseModel):
    date: datetime
    rate: int


class TableTrends(BaseModel):
    refresh_times: list[RefreshTimePoint]
    success_rate: list[SuccessRatePoint]


class TableMetricsItem(BaseModel):
    table_name: str
    schema_: str = Field(alias="schema")
    category: str
    category_key: str
    status: TableStatus
    health_score: int = Field(ge=0, le=100)
    metrics: TableMetricsBlock
    trends: TableTrends


class StatusCounts(BaseModel):
    active: int
    stale: int
    error: int
    disabled: int


class RefreshSummary(BaseModel):
    total_tables: int
    by_status: StatusCounts
    avg_health_score: int


class CategoryRollup(BaseModel):
    key: str
    name: str
    priority: int
    table_count: int
    avg_health_score: int


class RefreshTablesResponse(BaseModel):
    tables: list[TableMetricsItem]
    summary: RefreshSummary
    categories: list[CategoryRollup] | None = None


class ErrorResponse(BaseModel):
    error: str
    details: str
