"""Test doubles shared by the test modules."""

from datetime import datetime, timedelta

from prepaidly.exceptions import XeroApiError

FIXED_NOW = datetime(2025, 1, 15, 12, 0, 0)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class MonotonicClock:
    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeXeroClient:
    """
    Stand-in for XeroClient that records every call.

    Responses can be queued per method; a queued exception is raised instead
    of returned. ``refresh_by_token`` maps a refresh token to a response or
    exception for sweeps over several connections.
    """

    def __init__(self):
        self.client_id = "test-client-id"
        self.client_secret = "test-client-secret"
        self.redirect_uri = "http://localhost:8080/api/auth/xero/callback"
        self.scopes = "openid profile email accounting.transactions accounting.settings offline_access"
        self.calls = []
        self.token_response = {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_in": 1800,
            "scope": self.scopes,
        }
        self.tenants = [{"id": "conn-1", "tenantId": "tenant-1", "tenantName": "Demo Company"}]
        self.organisation = {"Name": "Demo Company"}
        self.accounts_response = {
            "Accounts": [
                {"AccountID": "acc-1", "Code": "620", "Name": "Prepayments", "Type": "CURRENT", "Status": "ACTIVE"},
                {"AccountID": "acc-2", "Code": "400", "Name": "Advertising", "Type": "EXPENSE", "Status": "ACTIVE",
                 "SystemAccount": ""},
            ]
        }
        self.invoices_response = {
            "Invoices": [
                {
                    "InvoiceID": "inv-1",
                    "InvoiceNumber": "INV-0001",
                    "Type": "ACCPAY",
                    "Contact": {"Name": "Acme Insurance"},
                    "Date": "/Date(1735689600000+0000)/",
                    "DueDate": "2025-01-31T00:00:00",
                    "Total": 3000.0,
                    "AmountDue": 3000.0,
                    "Status": "AUTHORISED",
                    "CurrencyCode": "NZD",
                }
            ]
        }
        self.queued = {}
        self.refresh_by_token = {}
        self._refresh_count = 0
        self._journal_count = 0

    def queue(self, method: str, *responses) -> None:
        self.queued.setdefault(method, []).extend(responses)

    def calls_to(self, method: str):
        return [args for name, args in self.calls if name == method]

    def _queued(self, method: str):
        queue = self.queued.get(method)
        if not queue:
            return None
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def get_authorization_url(self, state: str) -> str:
        self.calls.append(("get_authorization_url", (state,)))
        return f"https://login.xero.com/identity/connect/authorize?client_id={self.client_id}&state={state}"

    def get_access_token(self, authorization_code: str):
        self.calls.append(("get_access_token", (authorization_code,)))
        return self._queued("get_access_token") or dict(self.token_response)

    def refresh_token(self, refresh_token: str):
        self.calls.append(("refresh_token", (refresh_token,)))
        behaviour = self.refresh_by_token.get(refresh_token)
        if isinstance(behaviour, Exception):
            raise behaviour
        if behaviour is not None:
            return behaviour
        queued = self._queued("refresh_token")
        if queued is not None:
            return queued
        self._refresh_count += 1
        return {
            "access_token": f"access-r{self._refresh_count}",
            "refresh_token": f"refresh-r{self._refresh_count}",
            "expires_in": 1800,
        }

    def get_connections(self, access_token: str):
        self.calls.append(("get_connections", (access_token,)))
        queued = self._queued("get_connections")
        return queued if queued is not None else list(self.tenants)

    def delete_connection(self, access_token: str, connection_id: str) -> bool:
        self.calls.append(("delete_connection", (access_token, connection_id)))
        queued = self._queued("delete_connection")
        return True if queued is None else queued

    def get_organisation(self, access_token: str, tenant_id: str):
        self.calls.append(("get_organisation", (access_token, tenant_id)))
        return self._queued("get_organisation") or self.organisation

    def get_accounts(self, access_token: str, tenant_id: str):
        self.calls.append(("get_accounts", (access_token, tenant_id)))
        return self._queued("get_accounts") or self.accounts_response

    def get_invoices(self, access_token: str, tenant_id: str):
        self.calls.append(("get_invoices", (access_token, tenant_id)))
        return self._queued("get_invoices") or self.invoices_response

    def create_manual_journal(self, access_token: str, tenant_id: str, payload):
        self.calls.append(("create_manual_journal", (access_token, tenant_id, payload)))
        queued = self._queued("create_manual_journal")
        if queued is not None:
            return queued
        self._journal_count += 1
        return {
            "ManualJournals": [
                {"ManualJournalID": f"mj-{self._journal_count}", "JournalNumber": self._journal_count}
            ]
        }


def http_error(status: int, body: str = "") -> XeroApiError:
    return XeroApiError(f"HTTP {status}", upstream_status=status, body=body)

