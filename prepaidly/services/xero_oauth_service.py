"""
Xero OAuth2 token lifecycle.

Handles authorization URL generation, code-to-token exchange, refresh with
rotation, proactive refresh before expiry and invalid_grant detection.

Xero token lifecycle notes:
- Access tokens expire after 30 minutes
- Refresh tokens expire after 60 days of inactivity
- Each refresh returns a NEW refresh token that replaces the old one
- A refresh token used twice fails on the second use
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from prepaidly.clients.xero_client import XeroClient
from prepaidly.exceptions import (
    ConfigurationError,
    ConnectionDisconnectedError,
    DecryptionError,
    InvalidGrantError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    PrepaidlyError,
    TokenRefreshError,
    XeroApiError,
)
from prepaidly.models import ConnectionStatus, User, XeroConnection
from prepaidly.services.encryption_service import EncryptionService
from prepaidly.services.oauth_state_cache import OAuthStateCache, oauth_state_cache

logger = logging.getLogger(__name__)

# Refresh tokens that expire within this window before handing them out
REFRESH_BUFFER = timedelta(minutes=5)

# Token endpoint errors that mean the grant itself is dead
TERMINAL_OAUTH_ERRORS = ("invalid_grant", "unauthorized_client")


@dataclass
class ConnectionStatusInfo:
    tenant_id: str
    tenant_name: str
    connected: bool
    connection_status: str
    message: str
    disconnect_reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    last_refreshed_at: Optional[datetime] = None


def classify_refresh_failure(error: XeroApiError) -> Optional[str]:
    """Return the disconnect reason for a terminal refresh failure, None if transient."""
    body = error.body or ""
    for code in TERMINAL_OAUTH_ERRORS:
        if code in body:
            return code
    if error.upstream_status in (400, 401):
        return f"token_refresh_failed_{error.upstream_status}"
    return None


def _parse_expires_in(token_response: Dict[str, Any]) -> int:
    value = token_response.get("expires_in")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise XeroApiError(f"Token response has no usable expires_in: {value!r}")


class XeroOAuthService:
    """Single owner of the token refresh policy, used by the API and the refresh job."""

    def __init__(
        self,
        db: Session,
        client: Optional[XeroClient] = None,
        encryption: Optional[EncryptionService] = None,
        state_cache: Optional[OAuthStateCache] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.client = client or XeroClient()
        self.encryption = encryption or EncryptionService()
        self.state_cache = state_cache or oauth_state_cache
        self.clock = clock

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error while trying to {action}: {str(e)}")
            raise PersistenceError(f"Failed to {action}: {str(e)}") from e

    def get_authorization_url(self, user_id: int) -> str:
        """
        Generate the authorization URL for the Xero OAuth2 flow.

        A fresh state is stored for ``user_id``; the callback must present it.
        """
        if not self.client.client_id:
            raise ConfigurationError("Xero Client ID is not configured")
        if not self.client.client_secret:
            raise ConfigurationError("Xero Client Secret is not configured")
        if not self.client.redirect_uri:
            raise ConfigurationError("Xero Redirect URI is not configured")

        state = self.state_cache.store_state(user_id)
        auth_url = self.client.get_authorization_url(state)
        logger.info(f"Generated Xero authorization URL for user {user_id} (scopes: {self.client.scopes})")
        return auth_url

    def exchange_code_for_tokens(
        self, code: str, state: Optional[str], user_id: Optional[int] = None
    ) -> XeroConnection:
        """
        Exchange an authorization code for tokens and upsert one connection per tenant.

        Xero's redirect only carries ``code`` and ``state``, so when ``user_id``
        is not given the user is the one the state was issued to.

        Returns:
            The connection for the first tenant Xero reports.

        Raises:
            InvalidStateError: state missing, unknown, expired or bound to another user
            XeroApiError: token exchange or tenant lookup failed
            NotFoundError: user does not exist
        """
        if user_id is None:
            user_id = self.state_cache.get_user_id(state)
        if user_id is None or not self.state_cache.validate_state(state, user_id):
            logger.error(f"State validation failed for user {user_id}")
            raise InvalidStateError(
                "Invalid or expired state parameter. Please try connecting to Xero again."
            )

        token_response = self.client.get_access_token(code)
        access_token = token_response.get("access_token")
        refresh_token = token_response.get("refresh_token")
        scopes = token_response.get("scope")
        if not access_token:
            raise XeroApiError("Access token not found in token response")
        if not refresh_token:
            raise XeroApiError(
                f"No refresh token in token response - offline_access scope may be missing. Scopes granted: {scopes}"
            )
        expires_in = _parse_expires_in(token_response)

        # The token endpoint does not say which tenants were authorized
        tenants = self.client.get_connections(access_token)
        if not tenants:
            raise XeroApiError("No Xero connections found. Please select an organisation during authorization.")

        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")

        now = self.clock()
        encrypted_access = self.encryption.encrypt(access_token)
        encrypted_refresh = self.encryption.encrypt(refresh_token)
        saved: List[XeroConnection] = []

        for index, tenant in enumerate(tenants, start=1):
            tenant_id = tenant.get("tenantId")
            if not tenant_id:
                logger.warning(f"[{index}/{len(tenants)}] Skipping Xero connection without tenantId")
                continue
            tenant_name = tenant.get("tenantName")

            connection = (
                self.db.query(XeroConnection)
                .filter(XeroConnection.user_id == user.id, XeroConnection.tenant_id == tenant_id)
                .first()
            )
            if connection is None:
                connection = XeroConnection(user_id=user.id, tenant_id=tenant_id)
                self.db.add(connection)
                logger.info(f"[{index}/{len(tenants)}] Creating connection for tenant {tenant_id}")
            else:
                logger.info(f"[{index}/{len(tenants)}] Updating connection for tenant {tenant_id}")

            if tenant_name and tenant_name.strip():
                connection.tenant_name = tenant_name
            connection.access_token = encrypted_access
            connection.refresh_token = encrypted_refresh
            connection.expires_at = now + timedelta(seconds=expires_in)
            connection.mark_connected()
            connection.scopes = scopes
            connection.xero_connection_id = tenant.get("id")
            connection.last_refreshed_at = now
            saved.append(connection)

        if not saved:
            raise XeroApiError("Xero returned no usable tenant connections")

        self._commit("save Xero connections")
        logger.info(f"Saved {len(saved)} Xero connection(s) for user {user_id}, status=CONNECTED")
        return saved[0]

    def refresh_tokens(self, connection: XeroConnection) -> XeroConnection:
        """
        Refresh the access token and store the rotated refresh token.

        Raises:
            InvalidGrantError: the refresh token is dead; connection is now DISCONNECTED
            TokenRefreshError: transient failure; connection status unchanged
        """
        tenant_id = connection.tenant_id
        tenant_label = connection.tenant_name or tenant_id
        logger.info(f"Refreshing tokens for tenant: {tenant_label} ({tenant_id})")

        try:
            old_refresh_token = self.encryption.decrypt(connection.refresh_token)
        except DecryptionError:
            logger.error(f"Stored refresh token for tenant {tenant_id} cannot be decrypted - marking as DISCONNECTED")
            self.mark_connection_disconnected(connection.id, "token_decryption_failed")
            raise InvalidGrantError(tenant_id, "token_decryption_failed")

        try:
            token_response = self.client.refresh_token(old_refresh_token)
        except XeroApiError as e:
            reason = classify_refresh_failure(e)
            if reason:
                logger.error(
                    f"Token refresh failed for tenant {tenant_label} ({tenant_id}): {reason} - "
                    f"marking as DISCONNECTED. User must re-authorize. HTTP {e.upstream_status}"
                )
                self.mark_connection_disconnected(connection.id, reason)
                raise InvalidGrantError(tenant_id, reason) from e
            logger.error(f"Token refresh error for tenant {tenant_label} ({tenant_id}): HTTP {e.upstream_status}")
            raise TokenRefreshError(
                f"Failed to refresh tokens: {e.message}", upstream_status=e.upstream_status, body=e.body
            ) from e

        new_access_token = token_response.get("access_token")
        if not new_access_token:
            raise TokenRefreshError("Failed to refresh tokens: no access token in response")
        new_refresh_token = token_response.get("refresh_token")
        try:
            expires_in = _parse_expires_in(token_response)
        except XeroApiError as e:
            raise TokenRefreshError(e.message) from e

        now = self.clock()
        encrypted_access = self.encryption.encrypt(new_access_token)
        if new_refresh_token:
            encrypted_refresh = self.encryption.encrypt(new_refresh_token)
        else:
            logger.warning(f"No new refresh token returned for tenant {tenant_id} - keeping existing refresh token")
            encrypted_refresh = connection.refresh_token

        # Connections authorized in the same flow share one grant
        updated = [connection] + self._connections_sharing_grant(connection, old_refresh_token)
        for conn in updated:
            conn.access_token = encrypted_access
            conn.refresh_token = encrypted_refresh
            conn.expires_at = now + timedelta(seconds=expires_in)
            conn.last_refreshed_at = now
            conn.mark_connected()

        self._commit("store refreshed tokens")
        logger.info(
            f"Token refresh successful for tenant {tenant_label} ({tenant_id}). "
            f"New expiry: {connection.expires_at}, status: CONNECTED"
        )
        if len(updated) > 1:
            logger.info(f"Rotated tokens propagated to {len(updated) - 1} other connection(s) on the same grant")
        return connection

    def _connections_sharing_grant(self, connection: XeroConnection, refresh_token: str) -> List[XeroConnection]:
        siblings = (
            self.db.query(XeroConnection)
            .filter(
                XeroConnection.user_id == connection.user_id,
                XeroConnection.id != connection.id,
                XeroConnection.connection_status == ConnectionStatus.CONNECTED,
            )
            .all()
        )
        matches = []
        for sibling in siblings:
            try:
                if self.encryption.decrypt(sibling.refresh_token) == refresh_token:
                    matches.append(sibling)
            except DecryptionError:
                logger.warning(f"Skipping connection {sibling.id}: stored refresh token cannot be decrypted")
        return matches

    def mark_connection_disconnected(self, connection_id: int, reason: str) -> None:
        connection = self.db.get(XeroConnection, connection_id)
        if connection is None:
            logger.warning(f"Cannot mark connection {connection_id} as disconnected: not found")
            return
        connection.mark_disconnected(reason)
        self._commit("mark connection disconnected")
        logger.info(f"Marked connection {connection_id} (tenant: {connection.tenant_id}) as DISCONNECTED. Reason: {reason}")

    def get_valid_access_token(self, connection: XeroConnection) -> str:
        """
        Return a decrypted access token that is valid for at least five more minutes.

        Refreshes first when the token is expired or about to expire.
        """
        if not connection.is_connected:
            logger.warning(
                f"Cannot get access token for DISCONNECTED tenant: {connection.tenant_id} "
                f"(reason: {connection.disconnect_reason})"
            )
            raise ConnectionDisconnectedError(
                f"Connection is disconnected for tenant {connection.tenant_id}. "
                f"Reason: {connection.disconnect_reason}. Please re-authorize."
            )

        expires_at = connection.expires_at
        if expires_at is None or expires_at <= self.clock() + REFRESH_BUFFER:
            logger.info(f"Token for tenant {connection.tenant_id} expires at {expires_at}, refreshing...")
            connection = self.refresh_tokens(connection)

        return self.encryption.decrypt(connection.access_token)

    def verify_connection(self, connection: XeroConnection) -> bool:
        """Check the tenant is still listed by Xero's /connections. Never raises."""
        if not connection.is_connected:
            return False
        try:
            access_token = self.get_valid_access_token(connection)
            tenants = self.client.get_connections(access_token)
        except PrepaidlyError as e:
            logger.debug(f"Connection verification failed for tenant {connection.tenant_id}: {e.message}")
            return False
        found = any(t.get("tenantId") == connection.tenant_id for t in tenants)
        if not found:
            logger.warning(f"Tenant {connection.tenant_id} not found in Xero /connections response")
        return found

    def get_tenant_info(self, access_token: str, tenant_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.client.get_organisation(access_token, tenant_id)
        except XeroApiError as e:
            logger.error(f"Error fetching tenant info for tenantId {tenant_id}: {e.message}")
            return None

    def update_tenant_name(self, connection: XeroConnection) -> bool:
        """Re-fetch the organisation name and store it if it changed."""
        access_token = self.get_valid_access_token(connection)
        info = self.get_tenant_info(access_token, connection.tenant_id)
        name = (info or {}).get("Name")
        if not name or not name.strip() or name == connection.tenant_name:
            return False
        connection.tenant_name = name
        self._commit("update tenant name")
        logger.info(f"Updated tenant name to '{name}' for tenant {connection.tenant_id}")
        return True

    def get_connections_for_user(self, user_id: int) -> List[XeroConnection]:
        return (
            self.db.query(XeroConnection)
            .filter(XeroConnection.user_id == user_id)
            .order_by(XeroConnection.id)
            .all()
        )

    def get_connection_for_tenant(self, tenant_id: str) -> XeroConnection:
        """
        The connection used for API calls on ``tenant_id``.

        A CONNECTED row wins over any DISCONNECTED one, newest first.

        Raises:
            NotFoundError: no connection for the tenant
            ConnectionDisconnectedError: every connection for the tenant is DISCONNECTED
        """
        rows = (
            self.db.query(XeroConnection)
            .filter(XeroConnection.tenant_id == tenant_id)
            .order_by(XeroConnection.updated_at.desc(), XeroConnection.id.desc())
            .all()
        )
        if not rows:
            raise NotFoundError(f"Xero connection not found for tenant: {tenant_id}")
        for connection in rows:
            if connection.is_connected:
                return connection
        raise ConnectionDisconnectedError(
            f"Xero connection is disconnected for tenant {tenant_id}. "
            f"Reason: {rows[0].disconnect_reason}. Please reconnect to Xero."
        )

    def get_connection_status(self, user_id: int) -> List[ConnectionStatusInfo]:
        """Status of each of the user's connections. A broken connection is reported, not raised."""
        results = []
        for conn in self.get_connections_for_user(user_id):
            info = ConnectionStatusInfo(
                tenant_id=conn.tenant_id,
                tenant_name=conn.tenant_name or conn.tenant_id,
                connected=False,
                connection_status=conn.connection_status.value,
                message="",
                disconnect_reason=conn.disconnect_reason,
            )
            try:
                self.get_valid_access_token(conn)
                info.connected = True
                info.message = "Connected"
            except PrepaidlyError as e:
                logger.warning(f"Connection check failed for tenantId {conn.tenant_id}: {e.message}")
                info.message = f"Error: {e.message}"
            info.connection_status = conn.connection_status.value
            info.disconnect_reason = conn.disconnect_reason
            info.expires_at = conn.expires_at
            info.last_refreshed_at = conn.last_refreshed_at
            results.append(info)
        return results

    def disconnect(self, user_id: int, tenant_id: str) -> None:
        """
        Explicit user disconnect: revoke on Xero's side when possible, then delete the row.
        """
        connection = (
            self.db.query(XeroConnection)
            .filter(XeroConnection.user_id == user_id, XeroConnection.tenant_id == tenant_id)
            .first()
        )
        if connection is None:
            raise NotFoundError(f"Connection not found for tenant: {tenant_id}")

        if connection.is_connected:
            try:
                access_token = self.get_valid_access_token(connection)
                xero_connection_id = connection.xero_connection_id
                if not xero_connection_id:
                    for tenant in self.client.get_connections(access_token):
                        if tenant.get("tenantId") == tenant_id:
                            xero_connection_id = tenant.get("id")
                            break
                if xero_connection_id:
                    self.client.delete_connection(access_token, xero_connection_id)
                else:
                    logger.warning(f"Xero connection id not found for tenant {tenant_id}; may already be revoked")
            except PrepaidlyError as e:
                logger.warning(f"Could not revoke Xero connection for tenant {tenant_id}: {e.message}")

        self.db.delete(connection)
        self._commit("delete Xero connection")
        logger.info(f"Deleted Xero connection for tenant: {tenant_id}")
