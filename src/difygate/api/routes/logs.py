"""Call logs API — browse, summarize, delete."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from difygate.api.middleware.auth import verify_admin_key

router = APIRouter()


@router.get("/api/logs")
async def list_logs(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    status: int | None = None,
    endpoint: str | None = None,
    date_from: str | None = Query(default=None, alias="dateFrom"),
    date_to: str | None = Query(default=None, alias="dateTo"),
    _api_key: str = Depends(verify_admin_key),
):
    """Newest-first page of call logs."""
    rows, total = await request.app.state.db.call_log_list(
        page=page,
        limit=limit,
        status=status,
        endpoint=endpoint,
        date_from=date_from,
        date_to=date_to,
    )
    return {"data": rows, "total": total, "page": page, "limit": limit}


@router.get("/api/logs/stats")
async def log_stats(
    request: Request,
    _api_key: str = Depends(verify_admin_key),
):
    return await request.app.state.db.call_log_stats()


@router.delete("/api/logs/{log_id}")
async def delete_log(
    log_id: int,
    request: Request,
    _api_key: str = Depends(verify_admin_key),
):
    if await request.app.state.db.call_log_delete(log_id):
        return {"status": "deleted", "id": log_id}
    raise HTTPException(status_code=404, detail=f"Log {log_id} not found")
