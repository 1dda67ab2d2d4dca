"""Posts schedule periods to Xero as manual journals."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from prepaidly.exceptions import AlreadyPostedError, NotFoundError, PersistenceError, XeroApiError
from prepaidly.models import JournalEntry, Schedule, ScheduleType
from prepaidly.services.schedule_service import get_entry_position
from prepaidly.services.xero_api_service import XeroApiService

logger = logging.getLogger(__name__)

DEFAULT_LABELS = {
    ScheduleType.PREPAID: "Prepaid expense recognition",
    ScheduleType.UNEARNED: "Unearned revenue recognition",
}


def build_narration(schedule: Schedule, entry: JournalEntry) -> str:
    if schedule.type == ScheduleType.PREPAID:
        kind, side = "Prepaid Expense", "Expense"
    else:
        kind, side = "Unearned Revenue", "Revenue"
    return f"{kind} Recognition - {side} (Period: {entry.period_date.isoformat()})"


def build_line_description(schedule: Schedule, entry: JournalEntry) -> str:
    label = (schedule.description or "").strip() or DEFAULT_LABELS[schedule.type]
    total = f"{Decimal(schedule.total_amount):,.2f}"
    position = get_entry_position(schedule, entry.id)
    if position is None:
        return f"{label} - {total}"
    index, count = position
    return f"{label} - {total} - {index} of {count}"


def build_journal_lines(schedule: Schedule, entry: JournalEntry) -> List[Dict[str, Any]]:
    """Two offsetting lines. Debits are positive, credits negative."""
    amount = Decimal(entry.amount)
    description = build_line_description(schedule, entry)
    if schedule.type == ScheduleType.PREPAID:
        debit_account, credit_account = schedule.expense_acct_code, schedule.deferral_acct_code
    else:
        debit_account, credit_account = schedule.deferral_acct_code, schedule.revenue_acct_code
    return [
        {"AccountCode": debit_account, "Description": description, "LineAmount": float(amount)},
        {"AccountCode": credit_account, "Description": description, "LineAmount": float(-amount)},
    ]


class JournalService:
    def __init__(
        self,
        db: Session,
        xero_api_service: XeroApiService,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.xero_api_service = xero_api_service
        self.clock = clock

    def post_journal(self, journal_entry_id: int, tenant_id: str) -> JournalEntry:
        """
        Post one journal entry to Xero.

        Raises:
            NotFoundError: entry does not exist or belongs to another tenant
            AlreadyPostedError: entry was posted before; Xero is not called
            XeroApiError: Xero rejected or failed the call; entry stays unposted
        """
        entry = self.db.get(JournalEntry, journal_entry_id)
        if entry is None:
            raise NotFoundError(f"Journal entry not found: {journal_entry_id}")

        schedule = entry.schedule
        if schedule.tenant_id != tenant_id:
            logger.warning(f"Journal entry {journal_entry_id} requested by tenant {tenant_id} belongs to another tenant")
            raise NotFoundError(f"Journal entry not found: {journal_entry_id}")

        if entry.posted:
            raise AlreadyPostedError(
                f"Journal entry {journal_entry_id} already posted (Xero journal {entry.xero_manual_journal_id})"
            )

        narration = build_narration(schedule, entry)
        lines = build_journal_lines(schedule, entry)

        try:
            result = self.xero_api_service.create_manual_journal(
                tenant_id, narration, entry.period_date.isoformat(), lines
            )
        except XeroApiError as e:
            logger.error(f"Error posting journal entry {journal_entry_id} to Xero: {e.message}")
            raise XeroApiError(
                f"Failed to post journal to Xero: {e.message}",
                upstream_status=e.upstream_status,
                body=e.body,
            ) from e

        entry.posted = True
        entry.xero_manual_journal_id = result.journal_id
        entry.xero_journal_number = result.journal_number
        entry.posted_at = self.clock()
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Journal {result.journal_id} was created in Xero but entry {journal_entry_id} could not be marked posted: {str(e)}"
            )
            raise PersistenceError(f"Failed to record posted journal: {str(e)}") from e

        logger.info(f"Posted journal entry {journal_entry_id} as Xero manual journal {result.journal_id}")
        return entry
