"""
Scheduled refresh of Xero tokens.

Every CONNECTED connection is refreshed on a cron schedule (every 6 hours by
default) so refresh tokens never hit Xero's 60-day inactivity limit. The
refresh itself is delegated to ``XeroOAuthService``, the same code path the
API uses.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.orm import Session

from prepaidly.config import config
from prepaidly.database import SessionLocal
from prepaidly.exceptions import InvalidGrantError, NotFoundError, PrepaidlyError
from prepaidly.models import ConnectionStatus, XeroConnection
from prepaidly.services.oauth_state_cache import OAuthStateCache, oauth_state_cache
from prepaidly.services.xero_oauth_service import XeroOAuthService

logger = logging.getLogger(__name__)

JOB_ID = "xero-token-refresh"


@dataclass
class RefreshSummary:
    succeeded: int = 0
    failed: int = 0
    disconnected: int = 0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.disconnected


class TokenRefreshScheduler:
    """Runs refresh sweeps, on demand or from a BackgroundScheduler cron job."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        service_factory: Callable[[Session], XeroOAuthService] = XeroOAuthService,
        cron_expression: Optional[str] = None,
        state_cache: OAuthStateCache = oauth_state_cache,
    ):
        self.session_factory = session_factory
        self.service_factory = service_factory
        self.cron_expression = cron_expression or config.TOKEN_REFRESH_CRON
        self.state_cache = state_cache
        self._scheduler: Optional[BackgroundScheduler] = None

    def refresh_all_tokens(self) -> RefreshSummary:
        """
        Refresh every CONNECTED connection once.

        Each connection is handled on its own: a failure is counted and logged
        and the sweep moves on. DISCONNECTED connections are never touched.
        """
        summary = RefreshSummary()
        db = self.session_factory()
        try:
            oauth_service = self.service_factory(db)
            started_at = oauth_service.clock()
            connections = (
                db.query(XeroConnection)
                .filter(XeroConnection.connection_status == ConnectionStatus.CONNECTED)
                .order_by(XeroConnection.id)
                .all()
            )
            logger.info(f"Starting token refresh sweep for {len(connections)} CONNECTED connection(s)")

            for connection in connections:
                self._refresh_one(db, oauth_service, connection, started_at, summary)
        finally:
            db.close()

        logger.info(
            f"Token refresh sweep finished: {summary.succeeded} succeeded, "
            f"{summary.failed} failed, {summary.disconnected} disconnected"
        )
        return summary

    def _refresh_one(
        self,
        db: Session,
        oauth_service: XeroOAuthService,
        connection: XeroConnection,
        started_at: datetime,
        summary: RefreshSummary,
    ) -> None:
        tenant_label = f"{connection.tenant_name or 'Unknown'} ({connection.tenant_id})"
        if not connection.is_connected:
            # Disconnected earlier in this sweep through a shared grant
            summary.disconnected += 1
            return
        if connection.last_refreshed_at and connection.last_refreshed_at >= started_at:
            logger.debug(f"Tokens for {tenant_label} already rotated in this sweep")
            summary.succeeded += 1
            return

        try:
            oauth_service.refresh_tokens(connection)
        except InvalidGrantError as e:
            logger.warning(f"Connection {tenant_label} disconnected during refresh: {e.reason}")
            summary.disconnected += 1
            return
        except PrepaidlyError as e:
            db.rollback()
            logger.error(f"Token refresh failed for {tenant_label}, will retry next run: {e.message}")
            summary.failed += 1
            return
        except Exception as e:
            db.rollback()
            logger.exception(f"Unexpected error refreshing {tenant_label}: {str(e)}")
            summary.failed += 1
            return

        summary.succeeded += 1
        try:
            oauth_service.update_tenant_name(connection)
        except PrepaidlyError as e:
            db.rollback()
            logger.warning(f"Could not update tenant name for {tenant_label}: {e.message}")

    def refresh_connection_by_tenant(self, tenant_id: str) -> bool:
        """
        Refresh the CONNECTED connections for one tenant and update the tenant name.

        Returns True if every refresh succeeded. Raises ``NotFoundError`` when the
        tenant has no CONNECTED connection.
        """
        db = self.session_factory()
        try:
            oauth_service = self.service_factory(db)
            connections = (
                db.query(XeroConnection)
                .filter(
                    XeroConnection.tenant_id == tenant_id,
                    XeroConnection.connection_status == ConnectionStatus.CONNECTED,
                )
                .all()
            )
            if not connections:
                raise NotFoundError(f"No CONNECTED Xero connection for tenant: {tenant_id}")

            ok = True
            for connection in connections:
                try:
                    oauth_service.refresh_tokens(connection)
                except PrepaidlyError as e:
                    db.rollback()
                    logger.error(f"Refresh for tenant {tenant_id} failed: {e.message}")
                    ok = False
                    continue
                try:
                    oauth_service.update_tenant_name(connection)
                except PrepaidlyError as e:
                    db.rollback()
                    logger.warning(f"Could not update tenant name for tenant {tenant_id}: {e.message}")
            return ok
        finally:
            db.close()

    def start(self) -> None:
        if self._scheduler is not None:
            logger.warning("Token refresh scheduler is already running")
            return
        self._scheduler = BackgroundScheduler(
            job_defaults={"coalesce": True, "max_instances": 1},
            timezone="UTC",
        )
        self._scheduler.add_job(
            self.refresh_all_tokens,
            trigger=CronTrigger.from_crontab(self.cron_expression, timezone="UTC"),
            id=JOB_ID,
            name="Xero token refresh",
            replace_existing=True,
        )
        self.state_cache.register_cleanup(self._scheduler)
        self._scheduler.start()
        logger.info(f"Token refresh scheduler started (cron: {self.cron_expression})")

    def shutdown(self, wait: bool = False) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("Token refresh scheduler stopped")

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running
