"""
OAuth state cache for CSRF protection.

State values are random tokens bound to the user that started the OAuth flow.
They live for 10 minutes and can be validated exactly once. Entries are kept in
process memory, so every instance behind a load balancer has its own cache and
a callback must land on the instance that issued the state.
"""
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

STATE_EXPIRATION_SECONDS = 10 * 60
CLEANUP_INTERVAL_SECONDS = 5 * 60


@dataclass(frozen=True)
class _StateEntry:
    user_id: int
    expires_at: float


def _preview(state: Optional[str]) -> str:
    if not state:
        return "<empty>"
    return state[:8] + "..."


class OAuthStateCache:
    """Expiring, single-use mapping from state token to user id."""

    def __init__(
        self,
        ttl_seconds: int = STATE_EXPIRATION_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, _StateEntry] = {}
        self._lock = threading.Lock()

    def store_state(self, user_id: int) -> str:
        """Generate a state for ``user_id`` and remember it until it expires."""
        state = secrets.token_urlsafe(32)
        with self._lock:
            self._entries[state] = _StateEntry(user_id, self._clock() + self._ttl)
        logger.debug(f"Stored OAuth state {_preview(state)} for user {user_id}")
        return state

    def validate_state(self, state: Optional[str], user_id: int) -> bool:
        """
        Check a state returned by the OAuth callback.

        Returns True only if the state exists, has not expired and belongs to
        ``user_id``; the entry is consumed in that case. Every failure returns
        False, the reason is only logged.
        """
        if not state:
            logger.warning("State validation failed: state is empty")
            return False

        with self._lock:
            entry = self._entries.get(state)
            if entry is None:
                logger.warning(f"State validation failed: state {_preview(state)} not found")
                return False

            if self._clock() >= entry.expires_at:
                del self._entries[state]
                logger.warning(f"State validation failed: state {_preview(state)} expired for user {user_id}")
                return False

            if entry.user_id != user_id:
                logger.warning(
                    f"State validation failed: user mismatch for state {_preview(state)} "
                    f"(expected {entry.user_id}, got {user_id})"
                )
                return False

            del self._entries[state]

        logger.debug(f"State {_preview(state)} validated for user {user_id}")
        return True

    def get_user_id(self, state: Optional[str]) -> Optional[int]:
        """
        User the state was issued to, or None if it is unknown or expired.

        Does not consume the state; ``validate_state`` still has to be called.
        """
        if not state:
            return None
        with self._lock:
            entry = self._entries.get(state)
            if entry is None or self._clock() >= entry.expires_at:
                return None
            return entry.user_id

    def cleanup_expired(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [state for state, entry in self._entries.items() if now >= entry.expires_at]
            for state in expired:
                del self._entries[state]
            remaining = len(self._entries)
        if expired:
            logger.debug(f"Cleaned up {len(expired)} expired OAuth states. Remaining: {remaining}")
        return len(expired)

    def register_cleanup(self, scheduler, interval_seconds: int = CLEANUP_INTERVAL_SECONDS) -> None:
        """Schedule the periodic sweep on an APScheduler scheduler."""
        scheduler.add_job(
            self.cleanup_expired,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id="oauth-state-cache-cleanup",
            name="OAuth state cache cleanup",
            replace_existing=True,
        )
        logger.info(f"OAuth state cache cleanup scheduled every {interval_seconds} seconds")


# Shared by the connect and callback routes
oauth_state_cache = OAuthStateCache()
