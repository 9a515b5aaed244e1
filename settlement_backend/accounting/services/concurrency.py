# accounting/services/concurrency.py

"""
CONFLICT RETRY

Runs a transactional unit of work and re-runs it when it loses a race.

The unit MUST own its transaction (decorated with @transaction.atomic or
opening one itself) so a retry starts from fresh reads. Validation errors
are never retried; only ConcurrencyConflictError subclasses are.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from django.conf import settings

from accounting.services.exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _configured_attempts() -> int:
    return max(1, int(getattr(settings, "SETTLEMENT_RETRY_ATTEMPTS", 3)))


def _configured_backoff() -> float:
    return max(0.0, float(getattr(settings, "SETTLEMENT_RETRY_BACKOFF_SECONDS", 0.05)))


def run_with_conflict_retry(
    operation: Callable[[], T],
    *,
    label: str,
    attempts: int | None = None,
    backoff_seconds: float | None = None,
) -> T:
    max_attempts = attempts or _configured_attempts()
    backoff = _configured_backoff() if backoff_seconds is None else backoff_seconds

    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except ConcurrencyConflictError as exc:
            if attempt >= max_attempts:
                logger.error(
                    "Concurrency conflict persisted, giving up",
                    extra={"operation": label, "attempts": attempt, "error": str(exc)},
                )
                raise

            logger.warning(
                "Concurrency conflict, retrying",
                extra={"operation": label, "attempt": attempt, "error": str(exc)},
            )
            if backoff:
                time.sleep(backoff * attempt)
