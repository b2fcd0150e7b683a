# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Abstract document store interface for pipeline-executing NoSQL backends."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence


class DocumentStoreError(Exception):
    """Base exception for document store errors."""
    pass


class DocumentStoreNotConnectedError(DocumentStoreError):
    """Exception raised when attempting operations on a disconnected store."""
    pass


class DocumentStoreConnectionError(DocumentStoreError):
    """Exception raised when connection to the document store fails."""
    pass


class DocumentNotFoundError(DocumentStoreError):
    """Exception raised when no document matches a single-result query."""
    pass


class DuplicateKeyError(DocumentStoreError):
    """Exception raised when a write or index build violates a unique index."""
    pass


class IndexAlreadyExistsError(DocumentStoreError):
    """Exception raised when an equivalent index is already present."""
    pass


class BulkInsertError(DocumentStoreError):
    """Exception raised when some documents of a bulk insert failed.

    Attributes:
        inserted_ids: IDs of the documents that were written
        errors: Error messages of the documents that were not
    """

    def __init__(self, message: str, inserted_ids: List[str], errors: List[str]):
        self.inserted_ids = inserted_ids
        self.errors = errors
        super().__init__(message)


class DocumentValidationError(DocumentStoreError):
    """Exception raised when a write is rejected before or by validation.

    Attributes:
        collection: The collection where validation failed
        errors: List of validation error messages
    """

    def __init__(self, collection: str, errors: List[str]):
        self.collection = collection
        self.errors = errors
        error_msg = f"Validation failed for collection '{collection}': {'; '.join(errors)}"
        super().__init__(error_msg)


class TransactionError(DocumentStoreError):
    """Exception raised when a transaction callback or its commit fails.

    Attributes:
        cause: The exception that made the transaction fail
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class DocumentStore(ABC):
    """Abstract base class for document storage backends.

    ``session`` arguments take the object returned by :meth:`start_session`.
    When given, the operation runs inside that session instead of an
    implicit one.
    """

    @abstractmethod
    def connect(self) -> None:
        """Connect to the document store.

        Raises:
            DocumentStoreConnectionError: If connection fails
        """
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the document store."""
        pass

    @abstractmethod
    def insert_document(
        self, collection: str, doc: Dict[str, Any], session: Any = None
    ) -> str:
        """Insert a document into the specified collection.

        Args:
            collection: Name of the collection
            doc: Document data as dictionary
            session: Optional store session

        Returns:
            Document ID as string

        Raises:
            DuplicateKeyError: If the document violates a unique index
            DocumentStoreError: If insertion fails
        """
        pass

    @abstractmethod
    def insert_documents(
        self,
        collection: str,
        docs: List[Dict[str, Any]],
        ordered: bool = True,
        session: Any = None,
    ) -> List[str]:
        """Insert several documents into the specified collection.

        Args:
            collection: Name of the collection
            docs: Documents to insert
            ordered: If False, a failing document does not stop the others
            session: Optional store session

        Returns:
            Document IDs as strings, in input order

        Raises:
            BulkInsertError: If some documents could not be inserted
        """
        pass

    @abstractmethod
    def find_document(
        self, collection: str, filter_dict: Optional[Dict[str, Any]] = None, session: Any = None
    ) -> Optional[Dict[str, Any]]:
        """Return the first document matching the filter, or None."""
        pass

    @abstractmethod
    def query_documents(
        self,
        collection: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        limit: int = 0,
        session: Any = None,
    ) -> List[Dict[str, Any]]:
        """Query documents matching the filter criteria.

        Args:
            collection: Name of the collection
            filter_dict: Filter criteria as dictionary
            limit: Maximum number of documents to return (0 for no limit)
            session: Optional store session

        Returns:
            List of matching documents
        """
        pass

    @abstractmethod
    def count_documents(
        self, collection: str, filter_dict: Optional[Dict[str, Any]] = None, session: Any = None
    ) -> int:
        """Count documents matching the filter criteria."""
        pass

    @abstractmethod
    def aggregate_documents(
        self, collection: str, pipeline: List[Dict[str, Any]], session: Any = None
    ) -> List[Dict[str, Any]]:
        """Execute an aggregation pipeline on a collection.

        Args:
            collection: Name of the collection
            pipeline: Aggregation pipeline (list of stage dictionaries)
            session: Optional store session

        Returns:
            List of aggregation results
        """
        pass

    @abstractmethod
    def update_documents(
        self,
        collection: str,
        filter_dict: Dict[str, Any],
        patch: Dict[str, Any],
        session: Any = None,
    ) -> int:
        """Apply a partial update to every document matching the filter.

        Args:
            collection: Name of the collection
            filter_dict: Filter criteria as dictionary
            patch: Fields to set
            session: Optional store session

        Returns:
            Number of documents actually modified

        Raises:
            DuplicateKeyError: If the update violates a unique index
            DocumentStoreError: If update operation fails
        """
        pass

    @abstractmethod
    def delete_documents(
        self, collection: str, filter_dict: Dict[str, Any], session: Any = None
    ) -> int:
        """Delete every document matching the filter.

        Returns:
            Number of deleted documents
        """
        pass

    @abstractmethod
    def index_exists(self, collection: str, keys: Sequence[str], unique: bool = True) -> bool:
        """Return True if an index over exactly ``keys`` exists.

        Args:
            collection: Name of the collection
            keys: Indexed field names, in index order
            unique: Only consider unique indexes
        """
        pass

    @abstractmethod
    def create_index(self, collection: str, keys: Sequence[str], unique: bool = True) -> str:
        """Create an ascending index over ``keys``.

        Returns:
            Name of the created index

        Raises:
            IndexAlreadyExistsError: If an equivalent index already exists
            DuplicateKeyError: If existing data violates the unique constraint
        """
        pass

    @abstractmethod
    def start_session(self) -> Any:
        """Open a session usable for multi-operation transactions.

        The returned object provides ``start_transaction()``,
        ``commit_transaction()``, ``abort_transaction()`` and ``end_session()``.
        """
        pass
