from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from refresh_health.api.schemas import ErrorResponse, RefreshTablesResponse
from refresh_health.services.data_service import DatabaseUnreachable, DataService
from refresh_health.services.refresh_store import RefreshStore
from refresh_health.services.shared.cache_store import QueryCache
from refresh_health.services.sql_adapter import SqlAdapter

logger = logging.getLogger(__name__)

router = APIRouter()
_service = DataService(
    RefreshStore(SqlAdapter()),
    cache=QueryCache(
        ttl_seconds=float(os.getenv("REFRESH_SNAPSHOT_TTL_SECONDS", "15")),
        max_entries=int(os.getenv("REFRESH_CACHE_MAX_ENTRIES", "64")),
    ),
)


def get_data_service() -> DataService:
    return _service


def _error(message: str, exc: Exception) -> JSONResponse:
    body = ErrorResponse(error=message, details=str(exc) or "Unknown error")
    return JSONResponse(status_code=500, content=body.model_dump())


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/refresh/tables",
    response_model=RefreshTablesResponse,
    response_model_exclude_unset=True,
    responses={500: {"model": ErrorResponse}},
)
def refresh_tables(
    category: Annotated[str | None, Query()] = None,
    table: Annotated[str | None, Query()] = None,
    svc: DataService = Depends(get_data_service),
) -> Any:
    """Per-table refresh health, summary and category roll-up for the monitor page."""
    try:
        return svc.get_refresh_tables(category=category or None, table=table or None)
    except Exception as exc:
        logger.exception("Error fetching table metrics")
        return _error("Failed to fetch table metrics", exc)


@router.get("/refresh/status", responses={500: {"model": ErrorResponse}})
def refresh_status(svc: DataService = Depends(get_data_service)) -> Any:
    try:
        return svc.get_refresh_status()
    except Exception as exc:
        logger.exception("Error fetching refresh status")
        return _error("Failed to fetch refresh status", exc)


@router.get("/refresh/health", responses={503: {"description": "Database unreachable"}})
def system_health(svc: DataService = Depends(get_data_service)) -> Any:
    """System-level checks with an overall healthy/degraded/critical verdict."""
    try:
        return svc.get_system_health()
    except DatabaseUnreachable as exc:
        return JSONResponse(status_code=503, content=exc.payload)
    except Exception as exc:
        logger.exception("Health check error")
        return JSONResponse(
            status_code=500,
            content={
                "status": "critical",
                "health_score": 0,
                "checks": [
                    {
                        "name": "system_error",
                        "status": "fail",
                        "message": "Health check system error",
                        "details": {"error": str(exc) or "Unknown error"},
                    }
                ],
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )


@router.get("/refresh/metrics", responses={500: {"model": ErrorResponse}})
def refresh_metrics(
    days: Annotated[str | None, Query()] = None,
    table_name: Annotated[str | None, Query()] = None,
    svc: DataService = Depends(get_data_service),
) -> Any:
    try:
        return svc.get_refresh_metrics(days=days, table_name=table_name or None)
    except Exception as exc:
        logger.exception("Error fetching refresh metrics")
        return _error("Failed to fetch refresh metrics", exc)
