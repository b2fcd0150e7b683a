# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Typed query compilation and collection access for document stores.

Compiles declarative query descriptors into aggregation pipelines, hides the
store's primary key behind an external identifier, creates unique indexes on
demand and runs groups of writes in transactions.
"""

__version__ = "0.1.0"

from .builders import build_aliases, build_lookup, build_match, build_projection, build_sort
from .collection import Collection, get_collection
from .compiler import CompiledQuery, QueryCompiler
from .config import DocumentStoreConfig, set_global_log_status
from .document_store import (
    BulkInsertError,
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreConnectionError,
    DocumentStoreError,
    DocumentStoreNotConnectedError,
    DocumentValidationError,
    DuplicateKeyError,
    IndexAlreadyExistsError,
    TransactionError,
)
from .factory import close_database, connect_database, create_document_store
from .identity import IdentityMapper
from .inmemory_document_store import InMemoryDocumentStore, InMemorySession
from .mongo_document_store import MongoDocumentStore
from .query import (
    And,
    Flat,
    InvalidQueryError,
    JoinOptions,
    Or,
    PaginatedResult,
    Query,
    SortOrder,
)
from .transaction import TransactionExecutor, TransactionState, execute_transaction
from .unique_validator import UniqueFieldValidator

__all__ = [
    # Version
    "__version__",
    # Query descriptors
    "Query",
    "JoinOptions",
    "SortOrder",
    "Flat",
    "Or",
    "And",
    "PaginatedResult",
    # Compilation
    "QueryCompiler",
    "CompiledQuery",
    "IdentityMapper",
    "build_match",
    "build_projection",
    "build_lookup",
    "build_sort",
    "build_aliases",
    # Collections and transactions
    "Collection",
    "get_collection",
    "UniqueFieldValidator",
    "TransactionExecutor",
    "TransactionState",
    "execute_transaction",
    # Document Stores
    "DocumentStore",
    "MongoDocumentStore",
    "InMemoryDocumentStore",
    "InMemorySession",
    "DocumentStoreConfig",
    "create_document_store",
    "connect_database",
    "close_database",
    "set_global_log_status",
    # Exceptions
    "DocumentStoreError",
    "DocumentStoreNotConnectedError",
    "DocumentStoreConnectionError",
    "DocumentNotFoundError",
    "DocumentValidationError",
    "DuplicateKeyError",
    "IndexAlreadyExistsError",
    "BulkInsertError",
    "TransactionError",
    "InvalidQueryError",
]
