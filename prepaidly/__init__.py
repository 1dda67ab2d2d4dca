"""Prepaidly: amortization schedules posted to Xero as manual journals."""

__version__ = "1.0.0"
