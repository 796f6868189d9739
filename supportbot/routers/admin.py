"""Admin API: tenant configuration writes, manual mappings, runtime stats."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel, Field

from supportbot.logging_config import get_logger
from supportbot.schemas.tenant import TenantConfig
from supportbot.services.tenant_store import StoreError

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"])


class MappingCreate(BaseModel):
    channel_group_id: str = Field(min_length=1)
    tenant_id: str = Field(min_length=1)


class MappingResponse(BaseModel):
    channel_group_id: str
    tenant_id: str
    changed: bool


def get_runtime(request: Request):
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Bot runtime not initialised")
    return runtime


def _require_admin_token(runtime, provided: Optional[str]) -> None:
    expected = runtime.settings.admin_api_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_API_TOKEN not configured")
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


@router.get("/tenants/{tenant_id}/config")
async def get_tenant_config(
    tenant_id: str,
    runtime=Depends(get_runtime),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(runtime, x_admin_token)
    config = await runtime.config_cache.get(tenant_id)
    return config.model_dump(by_alias=True, mode="json")


@router.put("/tenants/{tenant_id}/config")
async def put_tenant_config(
    tenant_id: str,
    body: TenantConfig,
    runtime=Depends(get_runtime),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(runtime, x_admin_token)
    stored = body.model_dump(by_alias=True, mode="json")
    try:
        await runtime.store.put_tenant_config(tenant_id, stored)
    except StoreError as exc:
        logger.error("Tenant config write failed", extra={"context": {"tenant_id": tenant_id, "error": str(exc)}})
        raise HTTPException(status_code=503, detail="Config store unavailable")

    runtime.config_cache.invalidate(tenant_id)
    logger.info("Tenant config updated", extra={"context": {"tenant_id": tenant_id, "enabled": body.enabled}})
    return stored


@router.post("/mappings", response_model=MappingResponse)
async def create_mapping(
    body: MappingCreate,
    runtime=Depends(get_runtime),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(runtime, x_admin_token)
    changed = runtime.resolver.register_mapping(body.channel_group_id, body.tenant_id)
    return MappingResponse(channel_group_id=body.channel_group_id, tenant_id=body.tenant_id, changed=changed)


@router.get("/stats")
async def get_stats(
    runtime=Depends(get_runtime),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(runtime, x_admin_token)
    return runtime.get_stats()


@router.post("/caches/clear")
async def clear_caches(
    runtime=Depends(get_runtime),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
):
    _require_admin_token(runtime, x_admin_token)
    runtime.config_cache.clear()
    cleared_answers = await runtime.engine.clear_cache()
    runtime.rate_limiter.clear()
    logger.info("Caches cleared via admin API", extra={"context": {"cleared_answers": cleared_answers}})
    return {"status": "cleared", "cleared_answers": cleared_answers}
