"""Xero API client for OAuth 2.0 authentication and API calls."""
import requests
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode
import base64
import logging
import time

from prepaidly.config import config
from prepaidly.exceptions import XeroApiError

logger = logging.getLogger(__name__)


class XeroClient:
    """Client for interacting with Xero API using OAuth 2.0.

    Every call is attempted once. HTTP and network failures are raised as
    ``XeroApiError`` carrying the upstream status and body so callers can tell
    an invalid grant from a transient failure.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.client_id = client_id if client_id is not None else config.XERO_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else config.XERO_CLIENT_SECRET
        self.redirect_uri = redirect_uri if redirect_uri is not None else config.XERO_REDIRECT_URI
        self.auth_url = config.XERO_AUTH_URL
        self.token_url = config.XERO_TOKEN_URL
        self.api_base_url = config.XERO_API_BASE_URL
        self.connections_url = config.XERO_CONNECTIONS_URL
        self.scopes = config.get_xero_scopes()
        self.timeout = config.HTTP_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def get_authorization_url(self, state: str) -> str:
        """
        Generate the OAuth 2.0 authorization URL.

        Args:
            state: State parameter for CSRF protection

        Returns:
            Authorization URL string
        """
        params = {
            "response_type": "code",
            "client_id": self.client_id.strip(),
            "redirect_uri": self.redirect_uri.strip(),
            "scope": self.scopes,
            "state": state,
        }
        return f"{self.auth_url}?{urlencode(params)}"

    def _basic_auth_headers(self) -> Dict[str, str]:
        credentials = f"{self.client_id}:{self.client_secret}"
        encoded_credentials = base64.b64encode(credentials.encode()).decode()
        return {
            "Authorization": f"Basic {encoded_credentials}",
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }

    def _bearer_headers(self, access_token: str, tenant_id: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        if tenant_id:
            headers["Xero-tenant-id"] = tenant_id
        return headers

    def _request(self, method: str, url: str, action: str, **kwargs) -> requests.Response:
        """Send one request and raise ``XeroApiError`` on any failure."""
        kwargs.setdefault("timeout", self.timeout)
        start_time = time.time()
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout while trying to {action}: no response within {kwargs['timeout']} seconds")
            raise XeroApiError(f"Failed to {action}: request timed out") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error while trying to {action}: {str(e)}")
            raise XeroApiError(f"Failed to {action}: {str(e)}") from e

        elapsed_time = time.time() - start_time
        logger.debug(f"{method} {url} -> {response.status_code} in {elapsed_time:.2f}s")

        if response.status_code >= 400:
            body = response.text[:500] if response.text else ""
            logger.error(f"HTTP error while trying to {action}: {response.status_code}")
            raise XeroApiError(
                f"Failed to {action}: HTTP {response.status_code} - {body[:200]}",
                upstream_status=response.status_code,
                body=body,
            )
        return response

    def _json(self, response: requests.Response, action: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise XeroApiError(f"Failed to {action}: response was not JSON", upstream_status=response.status_code) from e

    def get_access_token(self, authorization_code: str) -> Dict[str, Any]:
        """
        Exchange authorization code for access token.

        The redirect URI must match the one used to obtain the code.

        Returns:
            Dictionary containing access_token, refresh_token, expires_in, scope
        """
        data = {
            "grant_type": "authorization_code",
            "code": authorization_code,
            "redirect_uri": self.redirect_uri,
        }
        logger.info(f"Exchanging authorization code for tokens (code length: {len(authorization_code or '')})")
        response = self._request(
            "POST", self.token_url, "exchange authorization code",
            headers=self._basic_auth_headers(), data=data,
        )
        return self._json(response, "exchange authorization code")

    def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        """
        Exchange a refresh token for a new access/refresh token pair.

        Xero rotates refresh tokens: the one passed in is invalid after a
        successful call.
        """
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        response = self._request(
            "POST", self.token_url, "refresh token",
            headers=self._basic_auth_headers(), data=data,
        )
        return self._json(response, "refresh token")

    def get_connections(self, access_token: str) -> List[Dict[str, Any]]:
        """
        Get connected Xero organizations (tenants).

        Returns:
            List of dicts with id, tenantId, tenantName, tenantType
        """
        response = self._request(
            "GET", self.connections_url, "get Xero connections",
            headers=self._bearer_headers(access_token),
        )
        data = self._json(response, "get Xero connections")
        return data if isinstance(data, list) else []

    def delete_connection(self, access_token: str, connection_id: str) -> bool:
        """
        Revoke a Xero connection.

        Args:
            connection_id: Xero connection ID (from get_connections(), not tenant_id)
        """
        response = self._request(
            "DELETE", f"{self.connections_url}/{connection_id}", "disconnect Xero connection",
            headers=self._bearer_headers(access_token),
        )
        logger.info(f"Xero disconnect API response: status={response.status_code}")
        return response.status_code in (200, 204)

    def get_organisation(self, access_token: str, tenant_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the tenant's Organisation record, or None if Xero returns none."""
        response = self._request(
            "GET", f"{self.api_base_url}/Organisation", "get organisation",
            headers=self._bearer_headers(access_token, tenant_id),
        )
        organisations = self._json(response, "get organisation").get("Organisations") or []
        return organisations[0] if organisations else None

    def get_accounts(self, access_token: str, tenant_id: str) -> Dict[str, Any]:
        """Fetch chart of accounts from Xero."""
        response = self._request(
            "GET", f"{self.api_base_url}/Accounts", "fetch accounts",
            headers=self._bearer_headers(access_token, tenant_id),
        )
        return self._json(response, "fetch accounts")

    def get_invoices(self, access_token: str, tenant_id: str) -> Dict[str, Any]:
        """Fetch invoices and bills from Xero."""
        response = self._request(
            "GET", f"{self.api_base_url}/Invoices", "fetch invoices",
            headers=self._bearer_headers(access_token, tenant_id),
        )
        return self._json(response, "fetch invoices")

    def create_manual_journal(self, access_token: str, tenant_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a ManualJournals payload."""
        headers = self._bearer_headers(access_token, tenant_id)
        headers["Content-Type"] = "application/json"
        response = self._request(
            "POST", f"{self.api_base_url}/ManualJournals", "create manual journal",
            headers=headers, json=payload,
        )
        return self._json(response, "create manual journal")
