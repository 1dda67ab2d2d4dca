"""Journal posting route."""
from fastapi import APIRouter, Depends

from prepaidly.dependencies import get_journal_service
from prepaidly.schemas.journal import PostJournalRequest
from prepaidly.schemas.schedule import JournalEntryResponse
from prepaidly.services.journal_service import JournalService

router = APIRouter(prefix="/api/journals", tags=["journals"])


@router.post("", response_model=JournalEntryResponse)
def post_journal(request: PostJournalRequest, journal_service: JournalService = Depends(get_journal_service)):
    """Post one schedule period to Xero as a manual journal."""
    entry = journal_service.post_journal(request.journal_entry_id, request.tenant_id)
    return JournalEntryResponse.model_validate(entry)
