# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Lazy creation of unique indexes before writes that declare unique fields."""

import logging
from typing import Sequence, Union

from .document_store import (
    DocumentStore,
    DocumentStoreError,
    DocumentValidationError,
    IndexAlreadyExistsError,
)

logger = logging.getLogger(__name__)

UniqueField = Union[str, Sequence[str]]


def _as_keys(field: UniqueField) -> tuple:
    if isinstance(field, str):
        return (field,)
    keys = tuple(field)
    if not keys:
        raise ValueError("a compound unique field set cannot be empty")
    return keys


class UniqueFieldValidator:
    """Ensures a unique index exists for each declared field or field set.

    An index is created only when the store does not report one. If a
    concurrent caller creates the same index first, the store's "already
    exists" error is ignored since the index is then present.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def ensure(self, collection: str, unique_fields: Sequence[UniqueField] | None) -> None:
        """Create the missing unique indexes on a collection.

        Args:
            collection: Name of the collection
            unique_fields: Field names, or sequences of field names for
                compound constraints

        Raises:
            DocumentValidationError: If an index cannot be created, e.g.
                because existing documents already hold duplicate values
        """
        if not unique_fields:
            return

        for field in unique_fields:
            keys = _as_keys(field)
            try:
                if self.store.index_exists(collection, keys, unique=True):
                    continue
                name = self.store.create_index(collection, keys, unique=True)
                logger.info("UniqueFieldValidator: created unique index %s on %s", name, collection)
            except IndexAlreadyExistsError as e:
                self._check_created_concurrently(collection, keys, e)
            except DocumentStoreError as e:
                logger.error(
                    "UniqueFieldValidator: cannot enforce uniqueness of %s on %s - %s",
                    list(keys),
                    collection,
                    e,
                )
                raise DocumentValidationError(
                    collection, [f"cannot enforce uniqueness of {list(keys)}: {e}"]
                ) from e

    def _check_created_concurrently(self, collection: str, keys: tuple, error: Exception) -> None:
        # the existing index must itself be unique
        try:
            present = self.store.index_exists(collection, keys, unique=True)
        except DocumentStoreError as e:
            raise DocumentValidationError(collection, [f"cannot enforce uniqueness of {list(keys)}: {e}"]) from e
        if not present:
            logger.error(
                "UniqueFieldValidator: %s.%s already has a non-unique index",
                collection,
                list(keys),
            )
            raise DocumentValidationError(
                collection, [f"cannot enforce uniqueness of {list(keys)}: {error}"]
            ) from error
        logger.warning(
            "UniqueFieldValidator: unique index on %s.%s was created concurrently",
            collection,
            list(keys),
        )
