import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ...core.query import DEFAULT_DAYS, MAX_DAYS, parse_view, query_usage
from ...storage.repository import StorageError, UsageStore
from ..dependencies import get_store

logger = logging.getLogger(__name__)


# Mounted under /api/admin
router = APIRouter()

# Mounted under /api
setup_router = APIRouter()


@router.get("/token-usage")
def get_token_usage(
    view: str = Query(default="all", alias="type"),
    days: int = Query(default=DEFAULT_DAYS, ge=1, le=MAX_DAYS),
    store: UsageStore = Depends(get_store),
):
    """Aggregated token usage for the dashboard. Unknown types return all views."""
    try:
        return query_usage(store, parse_view(view), days=days)
    except Exception:
        logger.exception("token-usage query failed (type=%s days=%d)", view, days)
        return JSONResponse(status_code=500, content={"error": "Failed to fetch token usage data"})


@router.get("/init-db")
def admin_init_db(store: UsageStore = Depends(get_store)):
    try:
        return store.initialize().to_dict()
    except StorageError as e:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to initialize database", "details": str(e)},
        )


@setup_router.get("/init-db")
def init_db(store: UsageStore = Depends(get_store)):
    try:
        result = store.initialize()
    except StorageError as e:
        logger.error("Database initialization error: %s", e)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
    return {
        "success": True,
        "message": "Database initialized successfully",
        "details": result.to_dict(),
    }
