"""
Unit of work around Django's transaction.atomic.

``UnitOfWork.with_transaction(fn)`` runs ``fn`` inside one atomic block:
it commits when ``fn`` returns and rolls back when ``fn`` raises or the
cancellation token fires. Cancellation is raised inside the atomic block,
so the rollback has happened by the time the caller sees it.
"""
import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Optional, TypeVar

from django.db import DEFAULT_DB_ALIAS, DatabaseError, transaction

from apps.core.exceptions import InternalError, OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CancellationToken:
    """
    Cooperative cancellation signal with an optional deadline.

    ``cancel()`` may be called from any thread. Work checks the token at
    checkpoints via ``raise_if_cancelled()``.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def raise_if_cancelled(self):
        if self.is_cancelled:
            raise OperationCancelled('Operation was cancelled')


class UnitOfWork:
    """
    Run a callable in a single database transaction.

    Usage:
        uow = UnitOfWork(cancellation=token)
        role = uow.with_transaction(lambda tx: create_role(...))

    The callable receives the unit of work so it can call ``checkpoint()``
    between steps.
    """

    def __init__(self, using: str = DEFAULT_DB_ALIAS, cancellation: Optional[CancellationToken] = None):
        self.using = using
        self.cancellation = cancellation

    def checkpoint(self):
        """Raise OperationCancelled if the token has fired."""
        if self.cancellation is not None:
            self.cancellation.raise_if_cancelled()

    def with_transaction(self, fn: Callable[['UnitOfWork'], T]) -> T:
        self.checkpoint()
        try:
            with transaction.atomic(using=self.using):
                result = fn(self)
                # Last chance to abort before commit
                self.checkpoint()
                return result
        except OperationCancelled:
            logger.info(
                "Transaction rolled back after cancellation",
                extra={'database': self.using}
            )
            raise


@contextmanager
def translate_database_errors(operation: str):
    """
    Turn raw database failures into InternalError at a component boundary.

    IntegrityError is a DatabaseError too, so callers that map constraint
    violations to ConflictError must catch it inside this block.
    """
    try:
        yield
    except DatabaseError as e:
        logger.error(
            f"Store failure during {operation}: {e}",
            extra={'operation': operation},
            exc_info=True
        )
        raise InternalError(
            'The permission store is unavailable',
            {'operation': operation}
        ) from e
