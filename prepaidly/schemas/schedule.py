"""Pydantic schemas for amortization schedules."""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from prepaidly.models import Schedule, ScheduleType
from prepaidly.schemas.base import CamelModel


class ScheduleCreate(CamelModel):
    """Schema for creating a schedule. Business rules are checked by the service."""
    tenant_id: str
    type: ScheduleType
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    total_amount: Optional[Decimal] = None
    xero_invoice_id: Optional[str] = None
    expense_acct_code: Optional[str] = None
    revenue_acct_code: Optional[str] = None
    deferral_acct_code: Optional[str] = None
    contact_name: Optional[str] = None
    description: Optional[str] = None
    invoice_date: Optional[date] = None
    created_by: Optional[int] = None
    method: str = "monthly"


class JournalEntryResponse(CamelModel):
    id: int
    schedule_id: int
    period_date: date
    amount: Decimal
    posted: bool
    xero_manual_journal_id: Optional[str] = None
    xero_journal_number: Optional[int] = None
    posted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ScheduleResponse(CamelModel):
    id: int
    tenant_id: str
    xero_invoice_id: Optional[str] = None
    type: ScheduleType
    start_date: date
    end_date: date
    total_amount: Decimal
    expense_acct_code: Optional[str] = None
    revenue_acct_code: Optional[str] = None
    deferral_acct_code: str
    contact_name: Optional[str] = None
    description: Optional[str] = None
    invoice_date: Optional[date] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    journal_entries: List[JournalEntryResponse] = []
    total_periods: int = 0
    posted_periods: int = 0
    remaining_balance: Decimal = Decimal("0.00")

    @classmethod
    def from_schedule(cls, schedule: Schedule) -> "ScheduleResponse":
        """Build the response with period counts and the unposted balance."""
        entries = list(schedule.journal_entries)
        posted = [entry for entry in entries if entry.posted]
        posted_amount = sum((Decimal(entry.amount) for entry in posted), Decimal("0.00"))
        response = cls.model_validate(schedule)
        response.total_periods = len(entries)
        response.posted_periods = len(posted)
        response.remaining_balance = Decimal(schedule.total_amount) - posted_amount
        return response
