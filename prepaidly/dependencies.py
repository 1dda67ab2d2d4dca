"""FastAPI dependency providers for services."""
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from prepaidly.clients.xero_client import XeroClient
from prepaidly.database import get_db
from prepaidly.services.encryption_service import EncryptionService
from prepaidly.services.journal_service import JournalService
from prepaidly.services.oauth_state_cache import OAuthStateCache, oauth_state_cache
from prepaidly.services.token_refresh_scheduler import TokenRefreshScheduler
from prepaidly.services.xero_api_service import XeroApiService
from prepaidly.services.xero_oauth_service import XeroOAuthService


@lru_cache()
def get_xero_client() -> XeroClient:
    return XeroClient()


@lru_cache()
def get_encryption_service() -> EncryptionService:
    return EncryptionService()


def get_state_cache() -> OAuthStateCache:
    return oauth_state_cache


def get_oauth_service(
    db: Session = Depends(get_db),
    client: XeroClient = Depends(get_xero_client),
    encryption: EncryptionService = Depends(get_encryption_service),
    state_cache: OAuthStateCache = Depends(get_state_cache),
) -> XeroOAuthService:
    return XeroOAuthService(db, client=client, encryption=encryption, state_cache=state_cache)


def get_xero_api_service(
    db: Session = Depends(get_db),
    oauth_service: XeroOAuthService = Depends(get_oauth_service),
) -> XeroApiService:
    return XeroApiService(db, oauth_service)


def get_journal_service(
    db: Session = Depends(get_db),
    xero_api_service: XeroApiService = Depends(get_xero_api_service),
) -> JournalService:
    return JournalService(db, xero_api_service)


def _build_oauth_service(db: Session) -> XeroOAuthService:
    return XeroOAuthService(db, client=get_xero_client(), encryption=get_encryption_service())


# Shared by the API (startup and /api/sync) and refresh_job
token_refresh_scheduler = TokenRefreshScheduler(service_factory=_build_oauth_service)


def get_token_refresh_scheduler() -> TokenRefreshScheduler:
    return token_refresh_scheduler
