# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Translation between the caller-facing identifier and the store primary key."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Mapping
from typing import Any

DEFAULT_EXTERNAL_FIELD = "id"
DEFAULT_INTERNAL_FIELD = "_id"

# Filter keys whose value is a list of nested filters
_LOGICAL_OPERATORS = ("$and", "$or", "$nor")


def _uuid_key() -> str:
    return str(uuid.uuid4())


class IdentityMapper:
    """Maps the external identifier field to the internal primary key and back.

    Documents are persisted under ``internal_field`` only; ``external_field``
    is derived from it on every read and removed on every write.

    Args:
        external_field: Name of the identifier exposed to callers
        internal_field: Name of the store's primary key
        key_factory: Produces a fresh internal key for new documents
    """

    def __init__(
        self,
        external_field: str = DEFAULT_EXTERNAL_FIELD,
        internal_field: str = DEFAULT_INTERNAL_FIELD,
        key_factory: Callable[[], Any] | None = None,
    ):
        if external_field == internal_field:
            raise ValueError("external and internal identifier fields must differ")
        self.external_field = external_field
        self.internal_field = internal_field
        self._key_factory = key_factory or _uuid_key

    def new_key(self) -> Any:
        """Generate a fresh internal key."""
        return self._key_factory()

    def to_internal(self, filter_or_doc: Mapping[str, Any] | None) -> dict[str, Any]:
        """Rewrite the external identifier key to the internal key.

        Nested ``$and``/``$or``/``$nor`` filter lists are rewritten as well.
        Other fields are left untouched. Returns a new dictionary.
        """
        if not filter_or_doc:
            return {}

        result: dict[str, Any] = {}
        for key, value in filter_or_doc.items():
            if key == self.external_field:
                result[self.internal_field] = value
            elif key in _LOGICAL_OPERATORS and isinstance(value, list):
                result[key] = [
                    self.to_internal(item) if isinstance(item, Mapping) else item for item in value
                ]
            else:
                result[key] = value
        return result

    def to_external(self, doc: Mapping[str, Any]) -> dict[str, Any]:
        """Replace the internal key with the stringified external identifier.

        Documents without an internal key are returned unchanged (as a copy).
        """
        result = dict(doc)
        if self.internal_field in result:
            internal = result.pop(self.internal_field)
            result[self.external_field] = str(internal) if internal is not None else None
        return result

    def strip(self, doc: Mapping[str, Any]) -> dict[str, Any]:
        """Drop both identifier fields from a caller-supplied payload."""
        return {
            key: value
            for key, value in doc.items()
            if key not in (self.external_field, self.internal_field)
        }

    def internal_field_name(self, field_path: str) -> str:
        """Return the stored field path for a caller-facing one."""
        return self.internal_field if field_path == self.external_field else field_path


DEFAULT_IDENTITY = IdentityMapper()
