# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Query descriptor types.

A :class:`Query` describes what a read should return: a filter, the fields to
keep, joins against other collections, aliases, ordering and pagination. It is
built by the caller for each call and never mutated afterwards.

The ``where`` clause is a tagged predicate:

- :class:`Flat` - field -> value or operator-set, e.g. ``{"age": {"$gte": 18}}``
- :class:`Or` / :class:`And` - a combinator over nested predicates

Plain dictionaries are accepted everywhere and converted with
:func:`as_predicate`. ``{"or": [...]}`` and ``{"and": [...]}`` select the
logical forms; any other mapping is a flat predicate.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")

LOGICAL_KEYS = ("or", "and")


class InvalidQueryError(ValueError):
    """Raised when a query descriptor cannot be compiled."""
    pass


class SortOrder(str, Enum):
    """Sort direction of a field."""

    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class Flat:
    """Field -> value / operator-set predicate."""

    conditions: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        mixed = [key for key in LOGICAL_KEYS if key in self.conditions]
        if mixed:
            raise InvalidQueryError(
                f"where clause mixes field predicates with logical key(s) {mixed}; "
                "use Or/And over flat predicates instead"
            )


def _check_not_empty(predicate: Any) -> None:
    if not predicate.predicates:
        raise InvalidQueryError(f"{type(predicate).__name__} must hold at least one predicate")


@dataclass(frozen=True)
class Or:
    """Matches when any of the predicates matches."""

    predicates: tuple[Predicate, ...]

    def __post_init__(self) -> None:
        _check_not_empty(self)


@dataclass(frozen=True)
class And:
    """Matches when all of the predicates match."""

    predicates: tuple[Predicate, ...]

    def __post_init__(self) -> None:
        _check_not_empty(self)


Predicate = Flat | Or | And


def as_predicate(where: Any) -> Predicate | None:
    """Convert a where clause to its tagged form.

    Args:
        where: A Predicate, a mapping, or None

    Returns:
        The tagged predicate, or None when there is no filter

    Raises:
        InvalidQueryError: If the mapping mixes flat and logical keys, or a
            logical key does not hold a list of predicates
    """
    if where is None or isinstance(where, (Flat, Or, And)):
        return where
    if not isinstance(where, Mapping):
        raise InvalidQueryError(f"where clause must be a mapping, got {type(where).__name__}")

    logical = [key for key in LOGICAL_KEYS if key in where]
    if not logical:
        return Flat(dict(where))
    if len(where) > 1:
        raise InvalidQueryError(
            f"where clause must hold exactly one of a flat predicate, 'or' or 'and'; got keys {sorted(where)}"
        )

    key = logical[0]
    items = where[key]
    if isinstance(items, (str, bytes)) or not isinstance(items, Sequence):
        raise InvalidQueryError(f"'{key}' must hold a list of predicates")
    if not items:
        raise InvalidQueryError(f"'{key}' must hold at least one predicate")
    predicates = tuple(as_predicate(item) for item in items)
    return Or(predicates) if key == "or" else And(predicates)


@dataclass(frozen=True)
class JoinOptions:
    """Target of a join.

    Attributes:
        collection_name: Collection the identifiers are resolved against
        select: Fields of the target documents to keep, besides the identifier
    """

    collection_name: str
    select: tuple[str, ...] | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "JoinOptions":
        name = data.get("collection_name", data.get("collectionName"))
        if not name:
            raise InvalidQueryError("join options require a collection name")
        select = data.get("select")
        if isinstance(select, str):
            raise InvalidQueryError("join select must be a list of field names")
        return cls(collection_name=name, select=tuple(select) if select is not None else None)


@dataclass(frozen=True)
class Query:
    """Declarative read request.

    Attributes:
        where: Filter predicate (see module docstring)
        select: Fields to retain; None keeps all fields
        join: Field holding an identifier (or identifier list) -> join target
        join_conditions: Joined field -> extra filter applied to the target
        limit: Maximum number of documents; zero, negative or None is a no-op
        skip: Documents to skip; zero, negative or None is a no-op
        sort: Field -> direction, earlier fields take priority
        aliases: Alias name -> source field path, computed before projection
    """

    where: Predicate | Mapping[str, Any] | None = None
    select: Sequence[str] | None = None
    join: Mapping[str, JoinOptions] | None = None
    join_conditions: Mapping[str, Mapping[str, Any]] | None = None
    limit: int | None = None
    skip: int | None = None
    sort: Mapping[str, SortOrder] | None = None
    aliases: Mapping[str, str] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "where", as_predicate(self.where))

        if self.select is not None:
            if isinstance(self.select, str):
                raise InvalidQueryError("select must be a list of field names")
            object.__setattr__(self, "select", tuple(self.select))

        if self.join is not None:
            join = {
                name: options if isinstance(options, JoinOptions) else JoinOptions.from_dict(options)
                for name, options in self.join.items()
            }
            object.__setattr__(self, "join", join)

        if self.sort is not None:
            try:
                sort = {name: SortOrder(order) for name, order in self.sort.items()}
            except ValueError as e:
                raise InvalidQueryError(f"sort direction must be 'asc' or 'desc': {e}") from e
            object.__setattr__(self, "sort", sort)

        for name in ("limit", "skip"):
            value = getattr(self, name)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise InvalidQueryError(f"{name} must be an integer, got {value!r}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Query":
        """Create a Query from a dictionary.

        Both ``join_conditions`` and ``joinConditions`` are accepted.
        """
        known = {"where", "select", "join", "join_conditions", "joinConditions",
                 "limit", "skip", "sort", "aliases"}
        unknown = set(data) - known
        if unknown:
            raise InvalidQueryError(f"unknown query keys: {sorted(unknown)}")
        return cls(
            where=data.get("where"),
            select=data.get("select"),
            join=data.get("join"),
            join_conditions=data.get("join_conditions", data.get("joinConditions")),
            limit=data.get("limit"),
            skip=data.get("skip"),
            sort=data.get("sort"),
            aliases=data.get("aliases"),
        )


def as_query(query: Query | Mapping[str, Any] | None) -> Query | None:
    """Accept a Query, a dictionary, or None."""
    if query is None or isinstance(query, Query):
        return query
    return Query.from_dict(query)


@dataclass
class PaginatedResult(Generic[T]):
    """One page of results.

    ``total_count`` counts every document matching the filter, regardless of
    pagination, projection or joins.
    """

    datas: list[T]
    total_count: int

    def to_dict(self) -> dict[str, Any]:
        return {"datas": self.datas, "totalCount": self.total_count}
