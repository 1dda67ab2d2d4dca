"""Xero OAuth routes: connect, callback, status and disconnect."""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from typing import Optional
import logging

from prepaidly.config import config
from prepaidly.clients.xero_client import XeroClient
from prepaidly.dependencies import get_oauth_service, get_xero_client
from prepaidly.exceptions import InvalidStateError, PrepaidlyError
from prepaidly.schemas.auth import CallbackResponse, ConnectionStatusResponse, XeroStatusResponse
from prepaidly.services.xero_oauth_service import XeroOAuthService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth/xero", tags=["xero-auth"])


def _resolve_user_id(user_id: Optional[int]) -> int:
    return user_id if user_id is not None else config.DEFAULT_USER_ID


@router.get("/connect")
def connect(
    user_id: Optional[int] = Query(None, alias="userId"),
    oauth_service: XeroOAuthService = Depends(get_oauth_service),
):
    """Redirect the browser to Xero's consent page."""
    target_user_id = _resolve_user_id(user_id)
    logger.info(f"Xero connect request received for user: {target_user_id}")
    auth_url = oauth_service.get_authorization_url(target_user_id)
    return RedirectResponse(url=auth_url, status_code=302)


@router.get("/callback", response_model=CallbackResponse)
def callback(
    code: str = Query(...),
    state: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None, alias="userId"),
    oauth_service: XeroOAuthService = Depends(get_oauth_service),
):
    """
    OAuth2 callback from Xero.

    Xero only sends ``code`` and ``state``; the user is the one the state was
    issued to unless ``userId`` is given. Validates state, exchanges the code
    and stores the connection, then refreshes once right away so a broken
    grant shows up immediately.
    """
    if not state:
        logger.error("OAuth callback missing state parameter")
        raise InvalidStateError("Missing state parameter. Please try connecting again.")

    connection = oauth_service.exchange_code_for_tokens(code, state, user_id)

    try:
        logger.info(f"Triggering immediate token refresh for newly connected tenant: {connection.tenant_id}")
        oauth_service.refresh_tokens(connection)
    except PrepaidlyError as e:
        logger.warning(
            f"Could not immediately refresh tokens for new connection (will be retried by scheduler): {e.message}"
        )

    return CallbackResponse(
        success=True,
        tenant_id=connection.tenant_id,
        tenant_name=connection.tenant_name,
        message="Successfully connected to Xero",
    )


@router.get("/config-check")
def config_check(client: XeroClient = Depends(get_xero_client)):
    """Show what OAuth settings the server runs with. The secret is never returned."""
    client_id = client.client_id or ""
    return {
        "clientId": client_id[:8] + "..." if len(client_id) > 8 else (client_id or "NOT SET"),
        "clientIdLength": len(client_id),
        "redirectUri": client.redirect_uri,
        "hasClientSecret": bool(client.client_secret),
        "configured": client.is_configured,
        "frontendUrl": config.FRONTEND_URL,
    }


@router.get("/status", response_model=XeroStatusResponse)
def status(
    user_id: Optional[int] = Query(None, alias="userId"),
    oauth_service: XeroOAuthService = Depends(get_oauth_service),
):
    """Connection status for each tenant the user has connected."""
    infos = oauth_service.get_connection_status(_resolve_user_id(user_id))
    connections = [ConnectionStatusResponse(**vars(info)) for info in infos]
    return XeroStatusResponse(
        connected=any(c.connected for c in connections),
        connections=connections,
    )


@router.delete("/disconnect")
def disconnect(
    tenant_id: str = Query(..., alias="tenantId"),
    user_id: Optional[int] = Query(None, alias="userId"),
    oauth_service: XeroOAuthService = Depends(get_oauth_service),
):
    """Revoke the tenant connection on Xero and delete it locally."""
    oauth_service.disconnect(_resolve_user_id(user_id), tenant_id)
    return {"success": True, "tenantId": tenant_id, "message": "Disconnected from Xero"}
