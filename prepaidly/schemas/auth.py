"""Pydantic schemas for the Xero OAuth endpoints."""
from datetime import datetime
from typing import List, Optional

from prepaidly.schemas.base import CamelModel


class ConnectionStatusResponse(CamelModel):
    tenant_id: str
    tenant_name: str
    connected: bool
    connection_status: str
    message: str
    disconnect_reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    last_refreshed_at: Optional[datetime] = None


class XeroStatusResponse(CamelModel):
    connected: bool
    connections: List[ConnectionStatusResponse] = []


class CallbackResponse(CamelModel):
    success: bool
    tenant_id: str
    tenant_name: Optional[str] = None
    message: str


class RefreshSummaryResponse(CamelModel):
    succeeded: int
    failed: int
    disconnected: int
    total: int
