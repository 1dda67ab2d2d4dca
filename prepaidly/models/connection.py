"""Xero connection model."""
import enum
from sqlalchemy import Column, String, Integer, Text, ForeignKey, DateTime, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime

from prepaidly.database import Base


class ConnectionStatus(str, enum.Enum):
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"


class XeroConnection(Base):
    """OAuth connection between one user and one Xero tenant.

    Tokens are stored encrypted and only ever read through the encryption
    service. DISCONNECTED rows are skipped by the refresh sweep until the user
    re-authorizes.
    """

    __tablename__ = "xero_connections"
    __table_args__ = (
        UniqueConstraint("user_id", "tenant_id", name="uq_xero_connections_user_tenant"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(String(255), nullable=False, index=True)
    tenant_name = Column(String(255), nullable=True)  # Kept for display when tokens expire
    access_token = Column(Text, nullable=False)  # Encrypted
    refresh_token = Column(Text, nullable=False)  # Encrypted
    expires_at = Column(DateTime, nullable=False)
    connection_status = Column(
        Enum(ConnectionStatus, name="connection_status", native_enum=False, length=20),
        nullable=False,
        default=ConnectionStatus.CONNECTED,
        index=True,
    )
    disconnect_reason = Column(String(500), nullable=True)
    scopes = Column(Text, nullable=True)
    xero_connection_id = Column(String(255), nullable=True)  # Xero-side connection UUID
    last_refreshed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="connections")

    @property
    def is_connected(self) -> bool:
        return self.connection_status == ConnectionStatus.CONNECTED

    def mark_connected(self):
        self.connection_status = ConnectionStatus.CONNECTED
        self.disconnect_reason = None

    def mark_disconnected(self, reason: str):
        self.connection_status = ConnectionStatus.DISCONNECTED
        self.disconnect_reason = reason

    def __repr__(self):
        return f"<XeroConnection(id={self.id}, tenant_id={self.tenant_id}, status={self.connection_status})>"
