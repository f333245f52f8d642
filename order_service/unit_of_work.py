"""Transactional boundary for the checkout commit unit.

A ``UnitOfWork`` owns the session's current transaction: it is either
committed explicitly or rolled back when the block exits for any reason,
including cancellation. Store errors are translated into the checkout error
taxonomy here so callers never see raw SQLAlchemy exceptions.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from .exceptions import PersistenceFailure, TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (OperationalError, PoolTimeoutError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def translate_store_error(exc: SQLAlchemyError) -> Exception:
    if is_transient(exc):
        return TransientStoreError(f"Store unavailable: {exc.__class__.__name__}")
    return PersistenceFailure(f"Store rejected the write: {exc.__class__.__name__}")


class UnitOfWork:
    def __init__(self, session: Session) -> None:
        self.session = session
        self._done = False

    def __enter__(self) -> "UnitOfWork":
        self._done = False
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if not self._done:
            # BaseException too: a cancelled request must not leave a half-applied unit
            self.rollback()
        return False

    def flush(self) -> None:
        try:
            self.session.flush()
        except SQLAlchemyError as e:
            raise translate_store_error(e) from e

    def refresh(self, instance) -> None:
        try:
            self.session.refresh(instance)
        except SQLAlchemyError as e:
            raise translate_store_error(e) from e

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.rollback()
            raise translate_store_error(e) from e
        self._done = True

    def rollback(self) -> None:
        self._done = True
        try:
            self.session.rollback()
        except SQLAlchemyError:
            # connection is gone; the server discards the open transaction
            logger.exception("rollback failed")


def run_with_retry(fn: Callable[[], T], *, attempts: int, delay: float) -> T:
    """Call ``fn`` again on ``TransientStoreError``, at most ``attempts`` times."""
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except TransientStoreError:
            if attempt >= attempts:
                raise
            logger.warning("transient store error, retrying (attempt %s/%s)", attempt, attempts)
            time.sleep(delay * attempt)
    raise AssertionError("unreachable")
