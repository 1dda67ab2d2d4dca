"""Read-only Xero data routes."""
from fastapi import APIRouter, Depends, Query
import logging

from prepaidly.dependencies import get_xero_api_service
from prepaidly.services.xero_api_service import XeroApiService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/xero", tags=["xero"])


@router.get("/accounts")
def get_accounts(
    tenant_id: str = Query(..., alias="tenantId"),
    xero_api_service: XeroApiService = Depends(get_xero_api_service),
):
    """Chart of accounts for the tenant."""
    accounts = xero_api_service.get_accounts(tenant_id)
    return {"accounts": accounts, "totalCount": len(accounts)}


@router.get("/invoices")
def get_invoices(
    tenant_id: str = Query(..., alias="tenantId"),
    xero_api_service: XeroApiService = Depends(get_xero_api_service),
):
    """Invoices and bills for the tenant."""
    invoices = xero_api_service.get_invoices(tenant_id)
    return {"invoices": invoices, "totalCount": len(invoices)}
