"""Service for amortization schedules and their journal entries."""
import calendar
import logging
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from prepaidly.exceptions import NotFoundError, PersistenceError, ValidationError
from prepaidly.models import JournalEntry, Schedule, ScheduleType
from prepaidly.schemas.schedule import ScheduleCreate

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

METHOD_MONTHLY = "monthly"
METHOD_DAILY = "daily"
METHODS = (METHOD_MONTHLY, METHOD_DAILY)


def months_between(start: date, end: date) -> int:
    """Number of calendar months touched by ``start..end``, both inclusive."""
    return (end.year - start.year) * 12 + (end.month - start.month) + 1


def _month_end(day: date) -> date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def _straight_line(start: date, end: date, total: Decimal) -> List[Tuple[date, Decimal]]:
    months = months_between(start, end)
    per_month = (total / months).quantize(CENT, rounding=ROUND_HALF_UP)
    first = start.replace(day=1)

    entries = []
    allocated = Decimal("0.00")
    for i in range(months):
        period = first + relativedelta(months=i)
        if i == months - 1:
            amount = total - allocated
        else:
            amount = per_month
            allocated += amount
        entries.append((period, amount))
    return entries


def _daily_pro_rata(start: date, end: date, total: Decimal) -> List[Tuple[date, Decimal]]:
    total_days = (end - start).days + 1

    entries = []
    allocated = Decimal("0.00")
    period_start = start
    while period_start <= end:
        month_end = _month_end(period_start)
        slice_end = min(month_end, end)
        if slice_end >= end:
            amount = total - allocated
        else:
            days = (slice_end - period_start).days + 1
            amount = (total * days / total_days).quantize(CENT, rounding=ROUND_HALF_UP)
            allocated += amount
        # Posted on the last day of the month even when the schedule ends earlier
        entries.append((month_end, amount))
        period_start = slice_end + timedelta(days=1)
    return entries


def generate_entries(
    start: date, end: date, total: Decimal, method: str = METHOD_MONTHLY
) -> List[Tuple[date, Decimal]]:
    """
    Split ``total`` into per-period amounts.

    ``monthly`` gives each calendar month the same rounded amount; ``daily``
    weights each month by the days it covers. In both cases the final period
    receives ``total`` minus everything before it, so the amounts always sum
    to ``total`` exactly.

    Returns:
        List of (period_date, amount) tuples in date order
    """
    if start > end:
        raise ValidationError("Start date must be on or before end date")
    if method == METHOD_MONTHLY:
        return _straight_line(start, end, total)
    if method == METHOD_DAILY:
        return _daily_pro_rata(start, end, total)
    raise ValidationError(f"Unknown amortization method: {method}. Expected one of {', '.join(METHODS)}")


def validate_schedule_request(request: ScheduleCreate) -> None:
    """Raise ValidationError for the first rule the request breaks."""
    if not request.tenant_id or not request.tenant_id.strip():
        raise ValidationError("Tenant ID is required")
    if request.start_date is None:
        raise ValidationError("Start date is required")
    if request.end_date is None:
        raise ValidationError("End date is required")
    if request.start_date > request.end_date:
        raise ValidationError("Start date must be on or before end date")

    total = request.total_amount
    if total is None:
        raise ValidationError("Total amount is required")
    if total <= 0:
        raise ValidationError("Total amount must be greater than 0")
    if total != total.quantize(CENT):
        raise ValidationError("Total amount cannot have more than 2 decimal places")

    if not request.deferral_acct_code:
        raise ValidationError("Deferral account code is required")
    if request.type == ScheduleType.PREPAID and not request.expense_acct_code:
        raise ValidationError("Expense account code is required for PREPAID schedules")
    if request.type == ScheduleType.UNEARNED and not request.revenue_acct_code:
        raise ValidationError("Revenue account code is required for UNEARNED schedules")
    if request.method not in METHODS:
        raise ValidationError(f"Unknown amortization method: {request.method}. Expected one of {', '.join(METHODS)}")


def create_schedule(db: Session, request: ScheduleCreate) -> Schedule:
    """
    Validate, generate entries and persist the schedule with all of them.

    The schedule and its entries are committed together; nothing is written
    if validation, generation or the commit fails.
    """
    validate_schedule_request(request)
    total = request.total_amount.quantize(CENT)
    periods = generate_entries(request.start_date, request.end_date, total, request.method)

    schedule = Schedule(
        tenant_id=request.tenant_id,
        xero_invoice_id=request.xero_invoice_id,
        type=request.type,
        start_date=request.start_date,
        end_date=request.end_date,
        total_amount=total,
        expense_acct_code=request.expense_acct_code,
        revenue_acct_code=request.revenue_acct_code,
        deferral_acct_code=request.deferral_acct_code,
        contact_name=request.contact_name,
        description=request.description,
        invoice_date=request.invoice_date,
        created_by=request.created_by,
    )
    schedule.journal_entries = [
        JournalEntry(period_date=period_date, amount=amount, posted=False)
        for period_date, amount in periods
    ]

    try:
        db.add(schedule)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save schedule for tenant {request.tenant_id}: {str(e)}")
        raise PersistenceError(f"Failed to save schedule: {str(e)}") from e

    db.refresh(schedule)
    logger.info(
        f"Created {schedule.type.value} schedule {schedule.id} for tenant {schedule.tenant_id}: "
        f"{total} over {len(periods)} period(s) ({request.method})"
    )
    return schedule


def get_schedules_by_tenant(db: Session, tenant_id: str) -> List[Schedule]:
    return (
        db.query(Schedule)
        .filter(Schedule.tenant_id == tenant_id)
        .order_by(Schedule.created_at.desc(), Schedule.id.desc())
        .all()
    )


def get_schedule(db: Session, schedule_id: int) -> Schedule:
    schedule = db.get(Schedule, schedule_id)
    if schedule is None:
        raise NotFoundError(f"Schedule not found: {schedule_id}")
    return schedule


def get_distinct_contact_names(db: Session, tenant_id: str) -> List[str]:
    """Contact names used on the tenant's schedules, for autocomplete."""
    rows = (
        db.query(Schedule.contact_name)
        .filter(Schedule.tenant_id == tenant_id, Schedule.contact_name.isnot(None), Schedule.contact_name != "")
        .distinct()
        .order_by(Schedule.contact_name)
        .all()
    )
    return [row[0] for row in rows]


def get_entry_position(schedule: Schedule, entry_id: int) -> Optional[Tuple[int, int]]:
    """1-based position of an entry among the schedule's entries by period date, and the count."""
    entries = sorted(schedule.journal_entries, key=lambda e: (e.period_date, e.id))
    for index, entry in enumerate(entries, start=1):
        if entry.id == entry_id:
            return index, len(entries)
    return None
