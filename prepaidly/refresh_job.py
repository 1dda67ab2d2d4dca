"""
One-shot Xero token refresh sweep.

Run from cron or a platform scheduler:

    python -m prepaidly.refresh_job

Uses the same token service as the API server. Exits non-zero only when the
sweep itself cannot run; individual connection failures are reported in the
summary.
"""
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from prepaidly.database import init_db
from prepaidly.exceptions import PrepaidlyError
from prepaidly.dependencies import token_refresh_scheduler
from prepaidly.services.token_refresh_scheduler import TokenRefreshScheduler

logger = logging.getLogger(__name__)


def run(scheduler: TokenRefreshScheduler = token_refresh_scheduler, create_tables: bool = True) -> int:
    try:
        if create_tables:
            init_db()
        summary = scheduler.refresh_all_tokens()
    except PrepaidlyError as e:
        logger.error(f"Token refresh job failed: {e.message}")
        return 1
    except SQLAlchemyError as e:
        logger.error(f"Token refresh job failed, database unavailable: {str(e)}")
        return 1

    logger.info(
        f"Token refresh job complete: {summary.total} connection(s), {summary.succeeded} succeeded, "
        f"{summary.failed} failed, {summary.disconnected} disconnected"
    )
    return 0


def main():
    logging.basicConfig(level=logging.INFO)
    sys.exit(run())


if __name__ == "__main__":
    main()
