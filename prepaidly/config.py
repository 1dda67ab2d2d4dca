"""Prepaidly settings read from the environment (and a local .env file)."""
import os
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Environment-backed settings. Read once at import time."""

    # Service configuration
    SERVICE_NAME: str = "prepaidly"
    PORT: int = int(os.getenv("PORT", 8080))
    HOST: str = os.getenv("HOST", "0.0.0.0")
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

    # Xero OAuth 2.0 credentials
    XERO_CLIENT_ID: str = os.getenv("XERO_CLIENT_ID", "")
    XERO_CLIENT_SECRET: str = os.getenv("XERO_CLIENT_SECRET", "")
    XERO_REDIRECT_URI: str = os.getenv("XERO_REDIRECT_URI", "http://localhost:8080/api/auth/xero/callback")

    # Xero API endpoints
    XERO_AUTH_URL: str = os.getenv("XERO_AUTH_URL", "https://login.xero.com/identity/connect/authorize")
    XERO_TOKEN_URL: str = os.getenv("XERO_TOKEN_URL", "https://identity.xero.com/connect/token")
    XERO_API_BASE_URL: str = os.getenv("XERO_API_BASE_URL", "https://api.xero.com/api.xro/2.0")
    XERO_CONNECTIONS_URL: str = os.getenv("XERO_CONNECTIONS_URL", "https://api.xero.com/connections")

    # Outbound HTTP timeout for every Xero call
    HTTP_TIMEOUT_SECONDS: int = int(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

    # Password used to derive the token encryption keys
    ENCRYPTION_PASSWORD: str = os.getenv("ENCRYPTION_PASSWORD", "")

    # Token refresh sweep (APScheduler cron expression, every 6 hours by default)
    TOKEN_REFRESH_CRON: str = os.getenv("TOKEN_REFRESH_CRON", "0 */6 * * *")
    ENABLE_TOKEN_REFRESH_SCHEDULER: bool = os.getenv("ENABLE_TOKEN_REFRESH_SCHEDULER", "true").lower() == "true"

    # User assumed by the OAuth endpoints when no userId is passed
    DEFAULT_USER_ID: int = int(os.getenv("DEFAULT_USER_ID", "1"))

    # Database configuration
    _explicit_database_url: Optional[str] = os.getenv("DATABASE_URL")

    @property
    def DATABASE_URL(self) -> str:
        """Get the database URL, falling back to a local SQLite file."""
        url = self._explicit_database_url or "sqlite:///./prepaidly.db"
        # Validate that the URL doesn't contain placeholder values
        if ':port' in url or '/port/' in url or url.endswith(':port'):
            raise ValueError(
                "DATABASE_URL contains placeholder 'port' instead of actual port number. "
                "Please set DATABASE_URL with a real port number (e.g., 5432)."
            )
        # Managed Postgres providers still hand out the legacy scheme
        if url.startswith("postgres://"):
            url = "postgresql+psycopg://" + url[len("postgres://"):]
        elif url.startswith("postgresql://"):
            url = "postgresql+psycopg://" + url[len("postgresql://"):]
        return url

    @classmethod
    def validate(cls) -> None:
        """Validate that required configuration values are set."""
        if not cls.XERO_CLIENT_ID:
            raise ValueError("XERO_CLIENT_ID environment variable is required")
        if not cls.XERO_CLIENT_SECRET:
            raise ValueError("XERO_CLIENT_SECRET environment variable is required")
        if not cls.ENCRYPTION_PASSWORD:
            raise ValueError("ENCRYPTION_PASSWORD environment variable is required")

    @classmethod
    def get_xero_scopes(cls) -> str:
        """Get the OAuth scopes required for the application.

        offline_access is what makes Xero hand back a refresh token.
        """
        return " ".join([
            "openid",
            "profile",
            "email",
            "accounting.transactions",
            "accounting.settings",
            "accounting.contacts.read",
            "offline_access",
        ])


config = Config()
