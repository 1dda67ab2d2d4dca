"""Tenant settings routes."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from prepaidly.database import get_db
from prepaidly.schemas.settings import TenantSettingsResponse, TenantSettingsUpdate
from prepaidly.services import tenant_settings_service

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("", response_model=TenantSettingsResponse)
async def get_settings(tenant_id: str = Query(..., alias="tenantId"), db: Session = Depends(get_db)):
    return tenant_settings_service.get_settings(db, tenant_id)


@router.put("", response_model=TenantSettingsResponse)
async def save_settings(
    request: TenantSettingsUpdate,
    tenant_id: str = Query(..., alias="tenantId"),
    db: Session = Depends(get_db),
):
    return tenant_settings_service.save_settings(
        db,
        tenant_id,
        prepayment_account=request.prepayment_account,
        unearned_account=request.unearned_account,
    )
