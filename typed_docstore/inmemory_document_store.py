# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""In-memory document store for testing and local development."""

import copy
import datetime
import functools
import logging
import re
import threading
import uuid
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .document_store import (
    BulkInsertError,
    DocumentStore,
    DocumentStoreError,
    DocumentStoreNotConnectedError,
    DuplicateKeyError,
    IndexAlreadyExistsError,
)

logger = logging.getLogger(__name__)


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


def get_path(doc: Any, path: str) -> Any:
    """Resolve a dotted field path, returning MISSING when absent."""
    current = doc
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def set_path(doc: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def unset_path(doc: Dict[str, Any], path: str) -> None:
    parts = path.split(".")
    current = doc
    for part in parts[:-1]:
        current = current.get(part)
        if not isinstance(current, dict):
            return
    current.pop(parts[-1], None)


def _type_rank(value: Any) -> int:
    # BSON comparison order
    if value is None or value is MISSING:
        return 1
    if isinstance(value, bool):
        return 8
    if isinstance(value, (int, float)):
        return 2
    if isinstance(value, str):
        return 3
    if isinstance(value, dict):
        return 4
    if isinstance(value, list):
        return 5
    if isinstance(value, bytes):
        return 6
    if isinstance(value, datetime.datetime):
        return 9
    return 10


def compare_values(left: Any, right: Any) -> int:
    """Three-way comparison following the BSON type order."""
    left_rank, right_rank = _type_rank(left), _type_rank(right)
    if left_rank != right_rank:
        return -1 if left_rank < right_rank else 1
    if left_rank == 1:
        return 0
    if left_rank == 4:
        left, right = list(left.items()), list(right.items())
    if left_rank in (4, 5):
        for left_item, right_item in zip(left, right):
            result = compare_values(left_item, right_item)
            if result:
                return result
        return (len(left) > len(right)) - (len(left) < len(right))
    try:
        return (left > right) - (left < right)
    except TypeError:
        return (str(left) > str(right)) - (str(left) < str(right))


def _hashable(value: Any) -> Any:
    if isinstance(value, dict):
        return tuple((key, _hashable(item)) for key, item in value.items())
    if isinstance(value, list):
        return tuple(_hashable(item) for item in value)
    if value is MISSING:
        return None
    return value


def _candidates(value: Any) -> List[Any]:
    """Values a condition is tested against: the value and, for arrays, its elements."""
    if isinstance(value, list):
        return [value, *value]
    return [value]


def _equals(value: Any, expected: Any) -> bool:
    if expected is None:
        return value is MISSING or value is None or (isinstance(value, list) and None in value)
    return any(
        _type_rank(candidate) == _type_rank(expected) and compare_values(candidate, expected) == 0
        for candidate in _candidates(value)
    )


def _compile_regex(pattern: Any, options: str = "") -> "re.Pattern[str]":
    if isinstance(pattern, re.Pattern):
        return pattern
    flags = 0
    if "i" in options:
        flags |= re.IGNORECASE
    if "m" in options:
        flags |= re.MULTILINE
    if "s" in options:
        flags |= re.DOTALL
    if "x" in options:
        flags |= re.VERBOSE
    if not isinstance(pattern, str):
        raise DocumentStoreError(f"$regex must be a string or compiled pattern, got {pattern!r}")
    return re.compile(pattern, flags)


def _compare_op(predicate: Callable[[int], bool]) -> Callable[[Any, Any], bool]:
    def apply(value: Any, expected: Any) -> bool:
        return any(
            candidate is not MISSING
            and _type_rank(candidate) == _type_rank(expected)
            and predicate(compare_values(candidate, expected))
            for candidate in _candidates(value)
        )
    return apply


_COMPARISONS = {
    "$gt": _compare_op(lambda result: result > 0),
    "$gte": _compare_op(lambda result: result >= 0),
    "$lt": _compare_op(lambda result: result < 0),
    "$lte": _compare_op(lambda result: result <= 0),
}


def _is_operator_spec(condition: Any) -> bool:
    return isinstance(condition, dict) and bool(condition) and all(
        key.startswith("$") for key in condition
    )


def _matches_condition(value: Any, condition: Any) -> bool:
    if not _is_operator_spec(condition):
        if isinstance(condition, re.Pattern):
            return any(isinstance(c, str) and condition.search(c) for c in _candidates(value))
        return _equals(value, condition)

    options = condition.get("$options", "")
    for op, expected in condition.items():
        if op == "$options":
            continue
        if op == "$eq":
            matched = _equals(value, expected)
        elif op == "$ne":
            matched = not _equals(value, expected)
        elif op in _COMPARISONS:
            matched = _COMPARISONS[op](value, expected)
        elif op == "$in":
            matched = any(_matches_condition(value, item) for item in expected)
        elif op == "$nin":
            matched = not any(_matches_condition(value, item) for item in expected)
        elif op == "$exists":
            matched = (value is not MISSING) == bool(expected)
        elif op == "$regex":
            pattern = _compile_regex(expected, options)
            matched = any(isinstance(c, str) and pattern.search(c) for c in _candidates(value))
        elif op == "$all":
            matched = isinstance(value, list) and all(_equals(value, item) for item in expected)
        elif op == "$elemMatch":
            matched = isinstance(value, list) and any(_element_matches(item, expected) for item in value)
        elif op == "$size":
            matched = isinstance(value, list) and len(value) == expected
        elif op == "$not":
            matched = not _matches_condition(value, expected)
        else:
            raise DocumentStoreError(f"unsupported query operator {op}")
        if not matched:
            return False
    return True


def _element_matches(element: Any, spec: Dict[str, Any]) -> bool:
    if _is_operator_spec(spec):
        return _matches_condition(element, spec)
    return isinstance(element, dict) and matches_filter(element, spec)


def matches_filter(doc: Dict[str, Any], filter_dict: Optional[Dict[str, Any]]) -> bool:
    """Return True if ``doc`` satisfies a MongoDB-style filter."""
    for key, condition in (filter_dict or {}).items():
        if key == "$and":
            matched = all(matches_filter(doc, clause) for clause in condition)
        elif key == "$or":
            matched = any(matches_filter(doc, clause) for clause in condition)
        elif key == "$nor":
            matched = not any(matches_filter(doc, clause) for clause in condition)
        elif key.startswith("$"):
            raise DocumentStoreError(f"unsupported top-level query operator {key}")
        else:
            matched = _matches_condition(get_path(doc, key), condition)
        if not matched:
            return False
    return True


def evaluate_expression(expression: Any, doc: Dict[str, Any]) -> Any:
    """Evaluate the aggregation expressions used by $addFields and $project."""
    if isinstance(expression, str) and expression.startswith("$"):
        return get_path(doc, expression[1:])
    if isinstance(expression, dict) and len(expression) == 1:
        op, argument = next(iter(expression.items()))
        if op == "$toString":
            value = evaluate_expression(argument, doc)
            return None if value is MISSING or value is None else str(value)
        if op == "$literal":
            return argument
        if op.startswith("$"):
            raise DocumentStoreError(f"unsupported expression operator {op}")
    if isinstance(expression, dict):
        return {key: evaluate_expression(value, doc) for key, value in expression.items()}
    return expression


class InMemorySession:
    """Session of an InMemoryDocumentStore.

    A transaction snapshots every collection and index when it starts;
    aborting restores the snapshot. Writes made by other callers while the
    transaction is open are rolled back with it.
    """

    def __init__(self, store: "InMemoryDocumentStore"):
        self.store = store
        self.has_ended = False
        self.in_transaction = False
        self._snapshot = None

    def _check_active(self) -> None:
        if self.has_ended:
            raise DocumentStoreError("Cannot use a session that has ended")

    def start_transaction(self) -> None:
        self._check_active()
        if self.in_transaction:
            raise DocumentStoreError("Transaction already in progress")
        self._snapshot = self.store._take_snapshot()
        self.in_transaction = True
        logger.debug("InMemorySession: transaction started")

    def commit_transaction(self) -> None:
        self._check_active()
        if not self.in_transaction:
            raise DocumentStoreError("No transaction started")
        self._snapshot = None
        self.in_transaction = False
        logger.debug("InMemorySession: transaction committed")

    def abort_transaction(self) -> None:
        self._check_active()
        if not self.in_transaction:
            raise DocumentStoreError("No transaction started")
        self.store._restore_snapshot(self._snapshot)
        self._snapshot = None
        self.in_transaction = False
        logger.debug("InMemorySession: transaction aborted")

    def end_session(self) -> None:
        if self.has_ended:
            return
        if self.in_transaction:
            self.abort_transaction()
        self.has_ended = True


class InMemoryDocumentStore(DocumentStore):
    """In-memory document store implementation for testing.

    Executes the aggregation stages $match, $lookup (with optional
    sub-pipeline), $addFields, $project, $sort, $skip, $limit and $count, and
    enforces unique indexes.

    **Note**: This implementation is meant for small datasets. $lookup is
    O(N*M) in the sizes of the joined collections.
    """

    @classmethod
    def from_config(cls, config: Any = None) -> "InMemoryDocumentStore":
        """Create an InMemoryDocumentStore; the configuration carries no options for it."""
        return cls()

    def __init__(self):
        """Initialize in-memory document store."""
        self.collections: Dict[str, Dict[Any, Dict[str, Any]]] = defaultdict(dict)
        self.indexes: Dict[str, Dict[str, Tuple[Tuple[str, ...], bool]]] = defaultdict(dict)
        self.connected = False
        self._lock = threading.RLock()

    def connect(self) -> None:
        """Pretend to connect.

        Note: Always succeeds for in-memory store
        """
        self.connected = True
        logger.debug("InMemoryDocumentStore: connected")

    def disconnect(self) -> None:
        """Pretend to disconnect."""
        self.connected = False
        logger.debug("InMemoryDocumentStore: disconnected")

    def _check(self, session: Any = None) -> None:
        if not self.connected:
            raise DocumentStoreNotConnectedError("Not connected to in-memory store")
        if session is not None:
            if getattr(session, "has_ended", False):
                raise DocumentStoreError("Cannot use a session that has ended")
            if getattr(session, "store", self) is not self:
                raise DocumentStoreError("Session belongs to another store")

    def _take_snapshot(self) -> Tuple[Dict, Dict]:
        with self._lock:
            return copy.deepcopy(dict(self.collections)), copy.deepcopy(dict(self.indexes))

    def _restore_snapshot(self, snapshot: Tuple[Dict, Dict]) -> None:
        collections, indexes = snapshot
        with self._lock:
            self.collections = defaultdict(dict, collections)
            self.indexes = defaultdict(dict, indexes)

    # -- unique index enforcement ------------------------------------------

    def _check_unique(self, collection: str, doc: Dict[str, Any], ignore_id: Any = MISSING) -> None:
        for name, (keys, unique) in self.indexes[collection].items():
            if not unique:
                continue
            value = tuple(_hashable(get_path(doc, key)) for key in keys)
            for other_id, other in self.collections[collection].items():
                if other_id == ignore_id:
                    continue
                if tuple(_hashable(get_path(other, key)) for key in keys) == value:
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error collection: {collection} index: {name} "
                        f"dup key: {dict(zip(keys, value))}"
                    )

    # -- writes --------------------------------------------------------------

    def _insert(self, collection: str, doc: Dict[str, Any]) -> Any:
        doc_copy = copy.deepcopy(doc)
        doc_id = doc_copy.setdefault("_id", str(uuid.uuid4()))
        try:
            hash(doc_id)
        except TypeError as e:
            raise DocumentStoreError(f"Unsupported _id value {doc_id!r}") from e
        if doc_id in self.collections[collection]:
            raise DuplicateKeyError(
                f"E11000 duplicate key error collection: {collection} index: _id_ dup key: {doc_id!r}"
            )
        self._check_unique(collection, doc_copy)
        self.collections[collection][doc_id] = doc_copy
        return doc_id

    def insert_document(self, collection: str, doc: Dict[str, Any], session: Any = None) -> str:
        """Insert a document, generating an ``_id`` when missing.

        Raises:
            DuplicateKeyError: If ``_id`` or a unique index value is taken
        """
        self._check(session)
        with self._lock:
            doc_id = self._insert(collection, doc)
        logger.debug("InMemoryDocumentStore: inserted document %s into %s", doc_id, collection)
        return str(doc_id)

    def insert_documents(
        self,
        collection: str,
        docs: List[Dict[str, Any]],
        ordered: bool = True,
        session: Any = None,
    ) -> List[str]:
        self._check(session)
        inserted: List[str] = []
        errors: List[str] = []
        with self._lock:
            for index, doc in enumerate(docs):
                try:
                    inserted.append(str(self._insert(collection, doc)))
                except DuplicateKeyError as e:
                    errors.append(f"document {index}: {e}")
                    if ordered:
                        break

        if errors:
            logger.warning(
                "InMemoryDocumentStore: bulk insert into %s wrote %d of %d documents",
                collection,
                len(inserted),
                len(docs),
            )
            raise BulkInsertError(
                f"Bulk insert into {collection} failed for {len(docs) - len(inserted)} documents",
                inserted_ids=inserted,
                errors=errors,
            )
        logger.debug("InMemoryDocumentStore: inserted %d documents into %s", len(inserted), collection)
        return inserted

    def update_documents(
        self,
        collection: str,
        filter_dict: Dict[str, Any],
        patch: Dict[str, Any],
        session: Any = None,
    ) -> int:
        """Apply ``patch`` as a ``$set`` to every matching document.

        Returns:
            Number of documents whose content changed

        Raises:
            DuplicateKeyError: If the update violates a unique index
        """
        self._check(session)
        if "_id" in patch:
            raise DocumentStoreError("Performing an update on the path '_id' would modify the immutable field '_id'")

        modified = 0
        with self._lock:
            documents = self.collections[collection]
            for doc_id, doc in list(documents.items()):
                if not matches_filter(doc, filter_dict):
                    continue
                updated = copy.deepcopy(doc)
                for path, value in patch.items():
                    set_path(updated, path, copy.deepcopy(value))
                if updated == doc:
                    continue
                self._check_unique(collection, updated, ignore_id=doc_id)
                documents[doc_id] = updated
                modified += 1

        logger.debug("InMemoryDocumentStore: updated %d documents in %s", modified, collection)
        return modified

    def delete_documents(self, collection: str, filter_dict: Dict[str, Any], session: Any = None) -> int:
        self._check(session)
        with self._lock:
            documents = self.collections[collection]
            doomed = [doc_id for doc_id, doc in documents.items() if matches_filter(doc, filter_dict)]
            for doc_id in doomed:
                del documents[doc_id]
        logger.debug("InMemoryDocumentStore: deleted %d documents from %s", len(doomed), collection)
        return len(doomed)

    # -- reads ---------------------------------------------------------------

    def find_document(
        self, collection: str, filter_dict: Optional[Dict[str, Any]] = None, session: Any = None
    ) -> Optional[Dict[str, Any]]:
        self._check(session)
        with self._lock:
            for doc in self.collections[collection].values():
                if matches_filter(doc, filter_dict):
                    return copy.deepcopy(doc)
        return None

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
            filter_dict: MongoDB-style filter
            limit: Maximum number of documents to return (0 for no limit)
            session: Optional session

        Returns:
            List of matching documents
        """
        self._check(session)
        results = []
        with self._lock:
            for doc in self.collections[collection].values():
                if matches_filter(doc, filter_dict):
                    # Use deep copy to prevent external mutations affecting stored data
                    results.append(copy.deepcopy(doc))
                    if limit and len(results) >= limit:
                        break

        logger.debug(
            "InMemoryDocumentStore: query on %s with %s returned %d documents",
            collection,
            filter_dict,
            len(results),
        )
        return results

    def count_documents(
        self, collection: str, filter_dict: Optional[Dict[str, Any]] = None, session: Any = None
    ) -> int:
        self._check(session)
        with self._lock:
            return sum(1 for doc in self.collections[collection].values() if matches_filter(doc, filter_dict))

    def aggregate_documents(
        self, collection: str, pipeline: List[Dict[str, Any]], session: Any = None
    ) -> List[Dict[str, Any]]:
        """Execute an aggregation pipeline on a collection.

        Raises:
            DocumentStoreError: If a stage or operator is not supported
        """
        self._check(session)
        with self._lock:
            documents = [copy.deepcopy(doc) for doc in self.collections.get(collection, {}).values()]
            results = self._run_pipeline(documents, pipeline)
        logger.debug(
            "InMemoryDocumentStore: aggregation on %s returned %d documents",
            collection,
            len(results),
        )
        return results

    def _run_pipeline(self, documents: List[Dict[str, Any]], pipeline: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        results = documents
        for stage in pipeline:
            if len(stage) != 1:
                raise DocumentStoreError(f"A pipeline stage must have exactly one key: {stage!r}")
            stage_name, stage_spec = next(iter(stage.items()))

            if stage_name == "$match":
                results = [doc for doc in results if matches_filter(doc, stage_spec)]
            elif stage_name == "$lookup":
                results = [self._apply_lookup(doc, stage_spec) for doc in results]
            elif stage_name == "$addFields":
                results = [self._apply_add_fields(doc, stage_spec) for doc in results]
            elif stage_name == "$project":
                results = [self._apply_project(doc, stage_spec) for doc in results]
            elif stage_name == "$sort":
                results = self._apply_sort(results, stage_spec)
            elif stage_name == "$skip":
                results = results[stage_spec:]
            elif stage_name == "$limit":
                results = results[:stage_spec]
            elif stage_name == "$count":
                results = [{stage_spec: len(results)}] if results else []
            else:
                raise DocumentStoreError(f"Unsupported aggregation stage {stage_name}")
        return results

    def _apply_lookup(self, doc: Dict[str, Any], lookup_spec: Dict[str, Any]) -> Dict[str, Any]:
        """Replace ``as`` with the foreign documents whose ``foreignField`` matches ``localField``.

        An array local value matches every foreign document equal to one of
        its elements.
        """
        foreign = self.collections.get(lookup_spec["from"], {})
        local_value = get_path(doc, lookup_spec["localField"])
        foreign_field = lookup_spec["foreignField"]

        matches = []
        for foreign_doc in foreign.values():
            foreign_value = get_path(foreign_doc, foreign_field)
            if isinstance(local_value, list):
                found = any(_equals(foreign_value, item) for item in local_value)
            elif local_value is MISSING:
                found = _equals(foreign_value, None)
            else:
                found = _equals(foreign_value, local_value)
            if found:
                matches.append(copy.deepcopy(foreign_doc))

        if lookup_spec.get("pipeline"):
            matches = self._run_pipeline(matches, lookup_spec["pipeline"])

        set_path(doc, lookup_spec["as"], matches)
        return doc

    def _apply_add_fields(self, doc: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
        values = {path: evaluate_expression(expression, doc) for path, expression in fields.items()}
        for path, value in values.items():
            if value is MISSING:
                unset_path(doc, path)
            else:
                set_path(doc, path, value)
        return doc

    def _apply_project(self, doc: Dict[str, Any], projection: Dict[str, Any]) -> Dict[str, Any]:
        flags = {path: value for path, value in projection.items() if path != "_id"}
        exclusion = bool(flags) and all(value in (0, False) for value in flags.values())
        include_id = projection.get("_id", 1) not in (0, False)

        if exclusion or not flags:
            result = copy.deepcopy(doc)
            for path in flags:
                unset_path(result, path)
            if not include_id:
                result.pop("_id", None)
            return result

        result = {}
        if include_id and "_id" in doc:
            result["_id"] = doc["_id"]
        for path, value in flags.items():
            if value in (0, False):
                raise DocumentStoreError(f"Cannot do exclusion on field {path} in inclusion projection")
            if value is True or (isinstance(value, (int, float)) and not isinstance(value, bool)):
                resolved = get_path(doc, path)
            else:
                resolved = evaluate_expression(value, doc)
            if resolved is not MISSING:
                set_path(result, path, resolved)
        return result

    def _apply_sort(self, documents: List[Dict[str, Any]], keys: Dict[str, int]) -> List[Dict[str, Any]]:
        def compare(left: Dict[str, Any], right: Dict[str, Any]) -> int:
            for path, direction in keys.items():
                result = compare_values(get_path(left, path), get_path(right, path))
                if result:
                    return result if direction >= 0 else -result
            return 0

        return sorted(documents, key=functools.cmp_to_key(compare))

    # -- indexes and sessions --------------------------------------------------

    def index_exists(self, collection: str, keys: Sequence[str], unique: bool = True) -> bool:
        self._check()
        wanted = tuple(keys)
        return any(
            index_keys == wanted and (index_unique or not unique)
            for index_keys, index_unique in self.indexes[collection].values()
        )

    def create_index(self, collection: str, keys: Sequence[str], unique: bool = True) -> str:
        """Create an index over ``keys``, named the way MongoDB names it.

        Raises:
            IndexAlreadyExistsError: If an identical index exists
            DocumentStoreError: If an index over the same keys exists with a
                different ``unique`` flag
            DuplicateKeyError: If existing documents violate the unique constraint
        """
        self._check()
        keys = tuple(keys)
        name = "_".join(f"{key}_1" for key in keys)
        with self._lock:
            for index_keys, index_unique in self.indexes[collection].values():
                if index_keys != keys:
                    continue
                if index_unique == unique:
                    raise IndexAlreadyExistsError(f"Index with keys {list(keys)} already exists on {collection}")
                raise DocumentStoreError(
                    f"Index with keys {list(keys)} already exists on {collection} "
                    f"with unique={index_unique} (unique={unique} requested)"
                )
            if unique:
                seen = set()
                for doc in self.collections[collection].values():
                    value = tuple(_hashable(get_path(doc, key)) for key in keys)
                    if value in seen:
                        raise DuplicateKeyError(
                            f"E11000 duplicate key error collection: {collection} index: {name} "
                            f"dup key: {dict(zip(keys, value))}"
                        )
                    seen.add(value)
            self.indexes[collection][name] = (keys, unique)
        logger.info("InMemoryDocumentStore: created index %s on %s", name, collection)
        return name

    def start_session(self) -> InMemorySession:
        self._check()
        return InMemorySession(self)

    def clear_collection(self, collection: str) -> None:
        """Clear all documents in a collection (useful for testing).

        Args:
            collection: Name of the collection
        """
        self.collections[collection].clear()
        logger.debug("InMemoryDocumentStore: cleared collection %s", collection)

    def clear_all(self) -> None:
        """Clear all collections and indexes (useful for testing)."""
        self.collections.clear()
        self.indexes.clear()
        logger.debug("InMemoryDocumentStore: cleared all collections")
