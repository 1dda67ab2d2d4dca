"""Pydantic schemas for tenant settings."""
from typing import Optional

from prepaidly.schemas.base import CamelModel


class TenantSettingsResponse(CamelModel):
    tenant_id: str
    prepayment_account: str = ""
    unearned_account: str = ""


class TenantSettingsUpdate(CamelModel):
    prepayment_account: Optional[str] = None
    unearned_account: Optional[str] = None
