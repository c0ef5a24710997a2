from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Optional, TypeVar

from ..core.exceptions import ConflictError, DeadlineExceededError, InvalidArgumentError
from .model import AggregateKey

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionConflict(Exception):
    """A concurrent writer won the race; the attempt must be retried."""


def normalize_keys(keys: Iterable[AggregateKey]) -> tuple[AggregateKey, ...]:
    # Sorted so every writer locks aggregates in the same order.
    scoped = tuple(sorted(set(keys)))
    if not scoped:
        raise InvalidArgumentError("A transaction needs at least one aggregate key")
    return scoped


def check_deadline(deadline: Optional[float]) -> None:
    if deadline is not None and time.monotonic() > deadline:
        raise DeadlineExceededError("Deadline exceeded before commit; nothing was applied")


def run_with_retries(
    attempt: Callable[[Optional[float]], T],
    *,
    keys: tuple[AggregateKey, ...],
    max_attempts: int,
    timeout: Optional[float] = None,
) -> T:
    """Call attempt(deadline) until it commits, retrying TransactionConflict."""

    deadline = time.monotonic() + timeout if timeout is not None else None
    scope = ", ".join(str(k) for k in keys)

    for n in range(1, max(1, int(max_attempts)) + 1):
        check_deadline(deadline)
        try:
            return attempt(deadline)
        except TransactionConflict as exc:
            logger.warning("Transaction conflict on [%s] (attempt %d/%d): %s", scope, n, max_attempts, exc)

    raise ConflictError(f"Could not commit changes to [{scope}] after {max_attempts} attempts")
