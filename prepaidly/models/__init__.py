"""Database models."""
from prepaidly.models.user import User
from prepaidly.models.connection import XeroConnection, ConnectionStatus
from prepaidly.models.schedule import Schedule, JournalEntry, ScheduleType
from prepaidly.models.tenant_settings import TenantSettings

__all__ = [
    "User",
    "XeroConnection",
    "ConnectionStatus",
    "Schedule",
    "JournalEntry",
    "ScheduleType",
    "TenantSettings",
]
