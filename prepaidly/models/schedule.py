"""Amortization schedule and journal entry models."""
import enum
from sqlalchemy import Column, String, Integer, Text, ForeignKey, DateTime, Date, Numeric, Boolean, Enum
from sqlalchemy.orm import relationship
from datetime import datetime

from prepaidly.database import Base


class ScheduleType(str, enum.Enum):
    PREPAID = "PREPAID"
    UNEARNED = "UNEARNED"


class Schedule(Base):
    """Amortization schedule for a prepaid expense or unearned revenue."""

    __tablename__ = "schedules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(255), nullable=False, index=True)
    xero_invoice_id = Column(String(255), nullable=True)
    type = Column(Enum(ScheduleType, name="schedule_type", native_enum=False, length=20), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    total_amount = Column(Numeric(19, 2), nullable=False)
    expense_acct_code = Column(String(50), nullable=True)
    revenue_acct_code = Column(String(50), nullable=True)
    deferral_acct_code = Column(String(50), nullable=False)
    contact_name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    invoice_date = Column(Date, nullable=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    journal_entries = relationship(
        "JournalEntry",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="JournalEntry.period_date",
    )

    def __repr__(self):
        return f"<Schedule(id={self.id}, tenant_id={self.tenant_id}, type={self.type})>"


class JournalEntry(Base):
    """One period of a schedule. Posted to Xero at most once."""

    __tablename__ = "journal_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    schedule_id = Column(Integer, ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False, index=True)
    period_date = Column(Date, nullable=False, index=True)
    amount = Column(Numeric(19, 2), nullable=False)
    xero_manual_journal_id = Column(String(255), nullable=True)
    xero_journal_number = Column(Integer, nullable=True)
    posted = Column(Boolean, nullable=False, default=False, index=True)
    posted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True, default=datetime.utcnow, onupdate=datetime.utcnow)

    schedule = relationship("Schedule", back_populates="journal_entries")

    def __repr__(self):
        return f"<JournalEntry(id={self.id}, period_date={self.period_date}, posted={self.posted})>"
