"""Timestamp helpers."""

import pendulum


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return pendulum.now("UTC").to_iso8601_string()
