"""Manual token refresh trigger."""
from fastapi import APIRouter, Depends, Query
from typing import Optional
import logging

from prepaidly.dependencies import get_oauth_service, get_token_refresh_scheduler
from prepaidly.exceptions import TokenRefreshError, XeroApiError
from prepaidly.schemas.auth import RefreshSummaryResponse
from prepaidly.services.token_refresh_scheduler import TokenRefreshScheduler
from prepaidly.services.xero_oauth_service import XeroOAuthService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("")
def sync(
    tenant_id: Optional[str] = Query(None, alias="tenantId"),
    oauth_service: XeroOAuthService = Depends(get_oauth_service),
    scheduler: TokenRefreshScheduler = Depends(get_token_refresh_scheduler),
):
    """
    Refresh tokens now.

    With ``tenantId`` the tenant's connection is refreshed and checked against
    Xero's /connections list; without it a full sweep runs.
    """
    if not tenant_id:
        summary = scheduler.refresh_all_tokens()
        return RefreshSummaryResponse(
            succeeded=summary.succeeded,
            failed=summary.failed,
            disconnected=summary.disconnected,
            total=summary.total,
        ).model_dump(by_alias=True)

    # 404 for an unknown tenant, 400 when every connection is DISCONNECTED
    oauth_service.get_connection_for_tenant(tenant_id)

    refreshed = scheduler.refresh_connection_by_tenant(tenant_id)

    # The refresh ran on the scheduler's own session
    oauth_service.db.expire_all()
    connection = oauth_service.get_connection_for_tenant(tenant_id)
    if not refreshed:
        raise TokenRefreshError(f"Token refresh failed for tenant {tenant_id}. Please try again later.")
    if not oauth_service.verify_connection(connection):
        raise XeroApiError("Failed to verify connection with Xero")

    logger.info(f"Synced tenant {tenant_id}")
    return {
        "success": True,
        "tenantId": tenant_id,
        "tenantName": connection.tenant_name,
        "message": "Tokens refreshed and connection verified",
    }
