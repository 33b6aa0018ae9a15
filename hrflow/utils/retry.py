from __future__ import annotations

from datetime import timedelta


def compute_backoff(attempt: int, base: float = 2.0) -> timedelta:
    """Exponential backoff in minutes: 2, 4, 8 for attempts 1, 2, 3."""
    return timedelta(minutes=base ** attempt)
