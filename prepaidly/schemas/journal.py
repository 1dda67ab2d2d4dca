"""Pydantic schemas for journal posting."""
from prepaidly.schemas.base import CamelModel


class PostJournalRequest(CamelModel):
    journal_entry_id: int
    tenant_id: str
