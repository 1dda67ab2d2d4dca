"""Business logic for Prepaidly."""
