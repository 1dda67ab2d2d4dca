"""HTTP clients for external services."""
from prepaidly.clients.xero_client import XeroClient

__all__ = ["XeroClient"]
