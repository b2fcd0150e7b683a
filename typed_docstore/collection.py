# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Collection facade: typed CRUD operations over one store collection.

Reads are compiled to aggregation pipelines and the results are mapped back
to the external identifier. Writes strip caller-supplied identifiers, ensure
the declared unique indexes and then reach the store.

Example:
    >>> from typed_docstore import InMemoryDocumentStore, get_collection
    >>> store = InMemoryDocumentStore()
    >>> store.connect()
    >>> users = get_collection(store, "users")
    >>> user_id = users.insert({"name": "Alice", "email": "a@test.com"}, unique_fields=["email"])
    >>> users.find_single({"where": {"id": user_id}})["name"]
    'Alice'
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from .builders import build_match
from .compiler import COUNT_FIELD, QueryCompiler
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
)
from .identity import IdentityMapper
from .query import PaginatedResult, Query, as_query
from .unique_validator import UniqueField, UniqueFieldValidator

logger = logging.getLogger(__name__)

# store errors constructed from a message alone keep their class when wrapped
_MESSAGE_ERRORS = (
    DocumentStoreError,
    DocumentStoreNotConnectedError,
    DocumentStoreConnectionError,
    IndexAlreadyExistsError,
)


class Collection:
    """CRUD surface bound to one collection of a document store.

    Args:
        store: Connected document store
        name: Collection name
        identity: Identifier mapping (defaults to ``id`` <-> ``_id``)
        compiler: Query compiler; built from ``identity`` when omitted
        validator: Unique field validator; built from ``store`` when omitted
    """

    def __init__(
        self,
        store: DocumentStore,
        name: str,
        identity: Optional[IdentityMapper] = None,
        compiler: Optional[QueryCompiler] = None,
        validator: Optional[UniqueFieldValidator] = None,
    ):
        if not name:
            raise ValueError("collection name is required")
        self.store = store
        self.name = name
        self.identity = identity or IdentityMapper()
        self.compiler = compiler or QueryCompiler(self.identity)
        self.validator = validator or UniqueFieldValidator(store)

    @contextmanager
    def _store_errors(self, operation: str, payload: Any) -> Iterator[None]:
        """Attach the operation and payload to store failures."""
        try:
            yield
        except (DocumentValidationError, DocumentNotFoundError):
            raise
        except DuplicateKeyError as e:
            logger.error("Collection[%s]: %s violates a unique index - %s", self.name, operation, e)
            raise DocumentValidationError(
                self.name, [f"{operation} with {payload!r} violates a unique constraint: {e}"]
            ) from e
        except DocumentStoreError as e:
            logger.error("Collection[%s]: %s failed with %r - %s", self.name, operation, payload, e)
            error_class = type(e) if type(e) in _MESSAGE_ERRORS else DocumentStoreError
            raise error_class(f"Failed to {operation} in '{self.name}' with {payload!r}: {e}") from e

    def _where_filter(self, where: Any) -> Dict[str, Any]:
        return self.identity.to_internal(build_match(where))

    def insert(
        self,
        data: Mapping[str, Any],
        unique_fields: Optional[Sequence[UniqueField]] = None,
        session: Any = None,
    ) -> str:
        """Insert one document.

        Any identifier in ``data`` is ignored; a new one is generated.

        Returns:
            External identifier of the new document

        Raises:
            DocumentValidationError: If a unique constraint cannot be created or
                the document violates one
        """
        doc = self.identity.strip(data)
        with self._store_errors("insert data", doc):
            self.validator.ensure(self.name, unique_fields)
            doc = {self.identity.internal_field: self.identity.new_key(), **doc}
            inserted_id = self.store.insert_document(self.name, doc, session=session)
        logger.debug("Collection[%s]: inserted %s", self.name, inserted_id)
        return str(inserted_id)

    def insert_many(
        self,
        datas: Sequence[Mapping[str, Any]],
        unique_fields: Optional[Sequence[UniqueField]] = None,
        session: Any = None,
    ) -> List[str]:
        """Insert several documents without stopping at the first failure.

        Returns:
            External identifiers of the documents that were inserted. When the
            store rejects some of them, only the successful ones are returned.
        """
        if not datas:
            return []

        docs = [
            {self.identity.internal_field: self.identity.new_key(), **self.identity.strip(data)}
            for data in datas
        ]
        with self._store_errors("insert many data", f"{len(docs)} documents"):
            self.validator.ensure(self.name, unique_fields)
            try:
                inserted_ids = self.store.insert_documents(self.name, docs, ordered=False, session=session)
            except BulkInsertError as e:
                logger.warning(
                    "Collection[%s]: inserted %d of %d documents - %s",
                    self.name,
                    len(e.inserted_ids),
                    len(docs),
                    "; ".join(e.errors),
                )
                inserted_ids = e.inserted_ids
        return [str(inserted_id) for inserted_id in inserted_ids]

    def update(
        self,
        where: Any,
        data: Mapping[str, Any],
        unique_fields: Optional[Sequence[UniqueField]] = None,
        session: Any = None,
    ) -> int:
        """Set the fields of ``data`` on every document matching ``where``.

        Returns:
            Number of documents actually modified

        Raises:
            DocumentValidationError: If ``data`` is empty or only holds
                identifier fields, or a unique constraint is violated
        """
        if not data:
            raise DocumentValidationError(self.name, [f"update data cannot be empty (filter: {where!r})"])
        patch = self.identity.strip(data)
        if not patch:
            raise DocumentValidationError(self.name, ["update data cannot change identifier fields"])

        filter_dict = self._where_filter(where)
        with self._store_errors("update data", {"filter": filter_dict, "data": patch}):
            self.validator.ensure(self.name, unique_fields)
            modified = self.store.update_documents(self.name, filter_dict, patch, session=session)
        logger.debug("Collection[%s]: updated %d documents matching %s", self.name, modified, filter_dict)
        return modified

    def delete(self, where: Any, session: Any = None) -> int:
        """Delete every document matching ``where``.

        Returns:
            Number of deleted documents
        """
        filter_dict = self._where_filter(where)
        with self._store_errors("delete data", filter_dict):
            deleted = self.store.delete_documents(self.name, filter_dict, session=session)
        logger.debug("Collection[%s]: deleted %d documents matching %s", self.name, deleted, filter_dict)
        return deleted

    def _find(self, query: Any, single: bool, session: Any) -> PaginatedResult:
        query = as_query(query)

        if query is None:
            with self._store_errors("find data", None):
                total_count = self.store.count_documents(self.name, session=session)
                if single:
                    doc = self.store.find_document(self.name, session=session)
                    docs = [doc] if doc is not None else []
                else:
                    docs = self.store.query_documents(self.name, session=session)
            return PaginatedResult([self.identity.to_external(doc) for doc in docs], total_count)

        compiled = self.compiler.compile(query, single=single)
        with self._store_errors("find data", compiled.render()):
            total_count = self._run_count(compiled.render_count(), session)
            docs = self.store.aggregate_documents(self.name, compiled.render(), session=session)
        return PaginatedResult([self.identity.to_external(doc) for doc in docs], total_count)

    def _run_count(self, pipeline: List[Dict[str, Any]], session: Any) -> int:
        results = self.store.aggregate_documents(self.name, pipeline, session=session)
        if not results:
            return 0
        return int(results[0].get(COUNT_FIELD, 0))

    def find_single(self, query: Query | Mapping[str, Any] | None = None, session: Any = None) -> Dict[str, Any]:
        """Return the first document matching the query.

        Raises:
            DocumentNotFoundError: If no document matches
        """
        result = self._find(query, single=True, session=session)
        if not result.datas:
            raise DocumentNotFoundError(f"No document in '{self.name}' matches {query!r}")
        return result.datas[0]

    def find_many(self, query: Query | Mapping[str, Any] | None = None, session: Any = None) -> PaginatedResult:
        """Return the documents matching the query and the filtered total."""
        return self._find(query, single=False, session=session)

    def count(self, where: Any = None, session: Any = None) -> int:
        """Count the documents matching ``where`` (all documents when omitted)."""
        if where is None:
            with self._store_errors("count data", None):
                return self.store.count_documents(self.name, session=session)
        pipeline = [stage.to_document() for stage in self.compiler.compile_count(where)]
        with self._store_errors("count data", pipeline):
            return self._run_count(pipeline, session)


def get_collection(
    store: DocumentStore, collection_name: str, external_id_field: str = "id"
) -> Collection:
    """Return a Collection facade bound to ``collection_name`` of ``store``."""
    return Collection(store, collection_name, identity=IdentityMapper(external_field=external_id_field))
