"""Apps API — register and manage Dify applications."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from difygate.api.middleware.auth import verify_admin_key
from difygate.gateway import BotType

router = APIRouter()


class AppCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    dify_api_url: str = Field(min_length=1)
    dify_api_key: str = Field(min_length=1)
    bot_type: BotType = BotType.CHAT
    input_variable: str | None = None
    output_variable: str | None = None
    model_name: str = "dify"
    is_enabled: bool = True


class AppUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    dify_api_url: str | None = None
    dify_api_key: str | None = None
    bot_type: BotType | None = None
    input_variable: str | None = None
    output_variable: str | None = None
    model_name: str | None = None
    is_enabled: bool | None = None


def _public(row: dict[str, Any]) -> dict[str, Any]:
    """App row without the Dify credential."""
    data = {key: value for key, value in row.items() if key != "dify_api_key"}
    data["is_enabled"] = bool(data.get("is_enabled"))
    return data


@router.get("/api/apps")
async def list_apps(
    request: Request,
    _api_key: str = Depends(verify_admin_key),
):
    """List all registered apps, newest first."""
    rows = await request.app.state.db.app_list()
    return [_public(row) for row in rows]


@router.post("/api/apps", status_code=201)
async def create_app(
    body: AppCreateRequest,
    request: Request,
    _api_key: str = Depends(verify_admin_key),
):
    """Register an app and issue its gateway API key."""
    row = await request.app.state.db.app_create(**body.model_dump(mode="json"))
    return _public(row)


@router.get("/api/apps/stats")
async def app_stats(
    request: Request,
    _api_key: str = Depends(verify_admin_key),
):
    return await request.app.state.db.app_stats()


@router.get("/api/apps/{app_id}")
async def get_app(
    app_id: int,
    request: Request,
    _api_key: str = Depends(verify_admin_key),
):
    row = await request.app.state.db.app_get(app_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"App {app_id} not found")
    return _public(row)


@router.patch("/api/apps/{app_id}")
async def update_app(
    app_id: int,
    body: AppUpdateRequest,
    request: Request,
    _api_key: str = Depends(verify_admin_key),
):
    """Update the fields present in the request body."""
    fields = body.model_dump(mode="json", exclude_unset=True)
    row = await request.app.state.db.app_update(app_id, **fields)
    if row is None:
        raise HTTPException(status_code=404, detail=f"App {app_id} not found")
    return _public(row)


@router.delete("/api/apps/{app_id}")
async def delete_app(
    app_id: int,
    request: Request,
    _api_key: str = Depends(verify_admin_key),
):
    if await request.app.state.db.app_delete(app_id):
        return {"status": "deleted", "id": app_id}
    raise HTTPException(status_code=404, detail=f"App {app_id} not found")


@router.post("/api/apps/{app_id}/regenerate-key")
async def regenerate_key(
    app_id: int,
    request: Request,
    _api_key: str = Depends(verify_admin_key),
):
    """Issue a new gateway key; the previous one stops working."""
    db = request.app.state.db
    if await db.app_get(app_id) is None:
        raise HTTPException(status_code=404, detail=f"App {app_id} not found")
    return _public(await db.app_regenerate_key(app_id))
