"""Unit-of-work handling shared by the domain services."""

from __future__ import annotations

import logging
from typing import Any, Callable

from datastore.graph import ConstraintViolation, GraphStoreError
from datastore.repository import SensorGraphRepository
from models.errors import Failure, Outcome, T

logger = logging.getLogger(__name__)


class _Rollback(Exception):
    """Carries a Failure out of a unit of work so its writes are discarded."""

    def __init__(self, failure: Failure) -> None:
        super().__init__(failure.message)
        self.failure = failure


class GraphService:
    """Runs each service operation as one atomic unit of work.

    A returned :class:`Failure` rolls the unit back.  Uniqueness conflicts
    (two writers creating the same sensor type) re-run the whole unit so the
    retry sees the winner's committed node.  Any other error, from the store
    or from the operation itself, is logged and becomes an ``Internal`` failure.
    """

    def __init__(self, repository: SensorGraphRepository, conflict_retries: int = 3) -> None:
        self.repository = repository
        self.conflict_retries = max(1, conflict_retries)

    def _atomic(self, operation: str, fn: Callable[[], Outcome[T]], **context: Any) -> Outcome[T]:
        def guarded() -> T:
            outcome = fn()
            if isinstance(outcome, Failure):
                raise _Rollback(outcome)
            return outcome

        for attempt in range(1, self.conflict_retries + 1):
            try:
                return self.repository.unit_of_work(guarded)
            except _Rollback as rollback:
                return rollback.failure
            except ConstraintViolation:
                logger.info(
                    "Conflicting write during %s; retrying",
                    operation,
                    extra={**context, "attempt": attempt},
                )
            except GraphStoreError:
                logger.exception("Graph store failure during %s", operation, extra=context)
                return Failure.internal()
            except Exception:
                logger.exception("Unexpected failure during %s", operation, extra=context)
                return Failure.internal()

        logger.error(
            "Giving up on %s after %d conflicting attempts",
            operation,
            self.conflict_retries,
            extra=context,
        )
        return Failure.internal(f"{operation} kept conflicting with concurrent writes.")
