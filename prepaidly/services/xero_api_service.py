"""Tenant-scoped Xero accounting calls with token management."""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from prepaidly.clients.xero_client import XeroClient
from prepaidly.exceptions import InvalidGrantError, XeroApiError
from prepaidly.services.xero_oauth_service import XeroOAuthService

logger = logging.getLogger(__name__)

_XERO_DATE_PATTERN = re.compile(r"/Date\((-?\d+)([+-]\d{4})?\)/")

AUTH_FAILURE_STATUSES = (401, 403)


@dataclass
class ManualJournalResult:
    journal_id: str
    journal_number: Optional[int] = None


def parse_xero_date(value: Optional[str]) -> Optional[str]:
    """
    Convert a Xero date to ISO ``YYYY-MM-DD``.

    Xero returns either ``/Date(1738195200000+0000)/`` or an ISO timestamp.
    Unparseable values are returned unchanged.
    """
    if not value:
        return None
    match = _XERO_DATE_PATTERN.match(value)
    if match:
        millis = int(match.group(1))
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).date().isoformat()
    if len(value) >= 10 and value[4] == "-" and value[7] == "-":
        return value[:10]
    return value


def _validation_messages(body: Optional[str]) -> List[str]:
    """Pull ``ValidationErrors`` messages out of a Xero error body."""
    if not body:
        return []
    return re.findall(r'"Message"\s*:\s*"([^"]*)"', body)


class XeroApiService:
    """
    Runs Xero API calls for a tenant.

    Access tokens always come from ``XeroOAuthService.get_valid_access_token``.
    A 401/403 response triggers one forced refresh and one retry; a second
    auth failure marks the connection DISCONNECTED.
    """

    def __init__(self, db: Session, oauth_service: XeroOAuthService, client: Optional[XeroClient] = None):
        self.db = db
        self.oauth_service = oauth_service
        self.client = client or oauth_service.client

    def _execute_with_retry(self, tenant_id: str, action: str, call: Callable[[str], Any]) -> Any:
        connection = self.oauth_service.get_connection_for_tenant(tenant_id)
        access_token = self.oauth_service.get_valid_access_token(connection)
        try:
            return call(access_token)
        except XeroApiError as e:
            if e.upstream_status not in AUTH_FAILURE_STATUSES:
                raise
            logger.warning(
                f"{action} for tenant {tenant_id} returned HTTP {e.upstream_status}, refreshing token and retrying"
            )

        # InvalidGrantError from here already disconnected the connection
        connection = self.oauth_service.refresh_tokens(connection)
        access_token = self.oauth_service.encryption.decrypt(connection.access_token)
        try:
            return call(access_token)
        except XeroApiError as e:
            if e.upstream_status in AUTH_FAILURE_STATUSES:
                reason = f"api_call_failed_after_retry_{e.upstream_status}"
                logger.error(f"{action} for tenant {tenant_id} still unauthorized after refresh - marking DISCONNECTED")
                self.oauth_service.mark_connection_disconnected(connection.id, reason)
                raise InvalidGrantError(tenant_id, reason) from e
            raise

    def get_accounts(self, tenant_id: str) -> List[Dict[str, Any]]:
        """Chart of accounts, trimmed to the fields the UI needs."""
        data = self._execute_with_retry(
            tenant_id, "Fetch accounts",
            lambda token: self.client.get_accounts(token, tenant_id),
        )
        accounts = []
        for account in data.get("Accounts") or []:
            accounts.append({
                "accountID": account.get("AccountID"),
                "code": account.get("Code"),
                "name": account.get("Name"),
                "type": account.get("Type"),
                "status": account.get("Status"),
                "isSystemAccount": bool(account.get("SystemAccount")),
            })
        logger.info(f"Fetched {len(accounts)} accounts for tenant {tenant_id}")
        return accounts

    def get_invoices(self, tenant_id: str) -> List[Dict[str, Any]]:
        data = self._execute_with_retry(
            tenant_id, "Fetch invoices",
            lambda token: self.client.get_invoices(token, tenant_id),
        )
        invoices = []
        for invoice in data.get("Invoices") or []:
            contact = invoice.get("Contact") or {}
            invoices.append({
                "invoiceID": invoice.get("InvoiceID"),
                "invoiceNumber": invoice.get("InvoiceNumber"),
                "type": invoice.get("Type"),
                "contact": contact.get("Name"),
                "date": parse_xero_date(invoice.get("Date") or invoice.get("DateString")),
                "dueDate": parse_xero_date(invoice.get("DueDate") or invoice.get("DueDateString")),
                "total": invoice.get("Total"),
                "amountDue": invoice.get("AmountDue"),
                "status": invoice.get("Status"),
                "currencyCode": invoice.get("CurrencyCode"),
            })
        logger.info(f"Fetched {len(invoices)} invoices for tenant {tenant_id}")
        return invoices

    def create_manual_journal(
        self,
        tenant_id: str,
        narration: str,
        journal_date: str,
        lines: List[Dict[str, Any]],
    ) -> ManualJournalResult:
        """
        Create a manual journal in POSTED status.

        Args:
            lines: dicts with AccountCode, Description and LineAmount
                (debits positive, credits negative)
        """
        payload = {
            "ManualJournals": [
                {
                    "Narration": narration,
                    "Date": journal_date,
                    "Status": "POSTED",
                    "JournalLines": [dict(line, TaxType="NONE") for line in lines],
                }
            ]
        }
        try:
            data = self._execute_with_retry(
                tenant_id, "Create manual journal",
                lambda token: self.client.create_manual_journal(token, tenant_id, payload),
            )
        except XeroApiError as e:
            messages = _validation_messages(e.body)
            if messages and not isinstance(e, InvalidGrantError):
                raise XeroApiError(
                    f"Xero rejected manual journal: {'; '.join(messages)}",
                    upstream_status=e.upstream_status,
                    body=e.body,
                ) from e
            raise

        journals = data.get("ManualJournals") or []
        if not journals:
            raise XeroApiError("Xero returned no manual journal in the response")
        journal = journals[0]
        errors = journal.get("ValidationErrors") or []
        if errors:
            messages = [err.get("Message", "") for err in errors]
            raise XeroApiError(f"Xero rejected manual journal: {'; '.join(messages)}")

        journal_id = journal.get("ManualJournalID")
        if not journal_id:
            raise XeroApiError("Xero response is missing ManualJournalID")
        journal_number = journal.get("JournalNumber")
        result = ManualJournalResult(
            journal_id=journal_id,
            journal_number=int(journal_number) if journal_number is not None else None,
        )
        logger.info(f"Created manual journal {result.journal_id} for tenant {tenant_id}")
        return result
