# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Run several facade operations atomically in one store session."""

import logging
from enum import Enum
from typing import Any, Callable, TypeVar

from .document_store import DocumentStore, TransactionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionState(str, Enum):
    IDLE = "idle"
    SESSION_OPEN = "session-open"
    IN_TRANSACTION = "in-transaction"
    COMMITTED = "committed"
    ABORTED = "aborted"
    SESSION_CLOSED = "session-closed"


class TransactionExecutor:
    """Executes a callback inside a transaction.

    The callback receives the session and must pass it to every facade call
    that belongs to the transaction. The transaction is committed when the
    callback returns and aborted when it raises. The session is ended on
    every exit path and is not reused.

    Attributes:
        state: Last state reached; ``SESSION_CLOSED`` after ``execute`` returns
        outcome: ``COMMITTED`` or ``ABORTED`` once a transaction has finished
    """

    def __init__(self, store: DocumentStore):
        self.store = store
        self.state = TransactionState.IDLE
        self.outcome: TransactionState | None = None

    def execute(self, callback: Callable[[Any], T]) -> T:
        """Run ``callback(session)`` in a transaction.

        Returns:
            The callback's return value

        Raises:
            TransactionError: If the callback or the commit fails; the
                original exception is kept as ``cause``
        """
        session = self.store.start_session()
        self.state = TransactionState.SESSION_OPEN
        self.outcome = None
        try:
            try:
                session.start_transaction()
                self.state = TransactionState.IN_TRANSACTION
                result = callback(session)
            except Exception as e:
                self._abort(session)
                logger.error("TransactionExecutor: transaction aborted - %s", e, exc_info=True)
                raise TransactionError(f"Transaction failed: {e}", cause=e) from e

            try:
                session.commit_transaction()
            except Exception as e:
                self._abort(session)
                logger.error("TransactionExecutor: commit failed - %s", e, exc_info=True)
                raise TransactionError(f"Transaction commit failed: {e}", cause=e) from e

            self.state = self.outcome = TransactionState.COMMITTED
            logger.debug("TransactionExecutor: transaction committed")
            return result
        finally:
            session.end_session()
            self.state = TransactionState.SESSION_CLOSED

    def _abort(self, session: Any) -> None:
        if self.state is TransactionState.IN_TRANSACTION:
            try:
                session.abort_transaction()
            except Exception as abort_error:
                # the original failure is the one reported
                logger.warning("TransactionExecutor: abort failed - %s", abort_error)
        self.state = self.outcome = TransactionState.ABORTED


def execute_transaction(store: DocumentStore, callback: Callable[[Any], T]) -> T:
    """Run ``callback(session)`` in a transaction on ``store``."""
    return TransactionExecutor(store).execute(callback)
