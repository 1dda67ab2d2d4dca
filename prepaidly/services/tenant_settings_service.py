"""Service for per-tenant default account codes."""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from prepaidly.exceptions import PersistenceError, ValidationError
from prepaidly.models import TenantSettings
from prepaidly.schemas.settings import TenantSettingsResponse

logger = logging.getLogger(__name__)


def get_settings(db: Session, tenant_id: str) -> TenantSettingsResponse:
    """Get the tenant's defaults. Unset codes come back as empty strings."""
    settings = db.query(TenantSettings).filter(TenantSettings.tenant_id == tenant_id).first()
    if settings is None:
        return TenantSettingsResponse(tenant_id=tenant_id)
    return TenantSettingsResponse(
        tenant_id=tenant_id,
        prepayment_account=settings.default_prepayment_acct_code or "",
        unearned_account=settings.default_unearned_acct_code or "",
    )


def save_settings(
    db: Session,
    tenant_id: str,
    prepayment_account: Optional[str] = None,
    unearned_account: Optional[str] = None,
) -> TenantSettingsResponse:
    """Create or update the single settings row for a tenant."""
    if not tenant_id or not tenant_id.strip():
        raise ValidationError("Tenant ID is required")

    settings = db.query(TenantSettings).filter(TenantSettings.tenant_id == tenant_id).first()
    if settings is None:
        settings = TenantSettings(tenant_id=tenant_id)
        db.add(settings)

    settings.default_prepayment_acct_code = prepayment_account or None
    settings.default_unearned_acct_code = unearned_account or None
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save settings for tenant {tenant_id}: {str(e)}")
        raise PersistenceError(f"Failed to save settings: {str(e)}") from e

    logger.info(f"Saved default account codes for tenant {tenant_id}")
    return get_settings(db, tenant_id)
