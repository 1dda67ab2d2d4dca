"""Per-tenant default account codes."""
from sqlalchemy import Column, String, Integer, DateTime
from datetime import datetime

from prepaidly.database import Base


class TenantSettings(Base):
    __tablename__ = "tenant_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(255), unique=True, nullable=False, index=True)
    default_prepayment_acct_code = Column(String(50), nullable=True)
    default_unearned_acct_code = Column(String(50), nullable=True)
    updated_at = Column(DateTime, nullable=True, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<TenantSettings(tenant_id={self.tenant_id})>"
