# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Builders turning query descriptor fragments into pipeline stage bodies.

All functions here are pure. Empty results mean "emit no stage".
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pymongo import ASCENDING, DESCENDING

from .identity import DEFAULT_IDENTITY, IdentityMapper
from .query import And, Flat, JoinOptions, Or, Predicate, SortOrder, as_predicate
from .stages import LookupStage, MatchStage, ProjectStage


def build_match(where: Predicate | Mapping[str, Any] | None) -> dict[str, Any]:
    """Flatten a where clause into a single store filter.

    Operator keys are passed through verbatim, including ones this module
    does not know about.

    Args:
        where: Tagged predicate, plain mapping, or None

    Returns:
        The filter; an empty dict when there is nothing to match on
    """
    predicate = as_predicate(where)
    if predicate is None:
        return {}
    if isinstance(predicate, Flat):
        return dict(predicate.conditions)
    if isinstance(predicate, Or):
        return {"$or": [build_match(item) for item in predicate.predicates]}
    if isinstance(predicate, And):
        return {"$and": [build_match(item) for item in predicate.predicates]}
    raise TypeError(f"unsupported predicate type: {type(predicate).__name__}")


def build_projection(
    select: Sequence[str] | None, identity: IdentityMapper = DEFAULT_IDENTITY
) -> dict[str, int]:
    """Map each selected field to an inclusion flag.

    Selecting the external identifier includes the internal key it is
    derived from.
    """
    if not select:
        return {}
    return {identity.internal_field_name(name): 1 for name in select}


def _lookup_projection(options: JoinOptions, identity: IdentityMapper) -> dict[str, Any]:
    projection: dict[str, Any] = {
        identity.external_field: {"$toString": f"${identity.internal_field}"},
        identity.internal_field: 0,
    }
    for name in options.select or ():
        if name in (identity.external_field, identity.internal_field):
            continue
        projection[name] = 1
    return projection


def build_lookup(
    join: Mapping[str, JoinOptions] | None,
    join_conditions: Mapping[str, Mapping[str, Any]] | None = None,
    identity: IdentityMapper = DEFAULT_IDENTITY,
) -> list[LookupStage]:
    """Build one lookup stage per joined field, in declaration order.

    The joined field is replaced by the list of resolved target documents.
    Each target document carries the external identifier and the selected
    fields only.
    """
    if not join:
        return []

    stages = []
    for field_name, options in join.items():
        if not isinstance(options, JoinOptions):
            options = JoinOptions.from_dict(options)

        pipeline: list[Any] = []
        condition = (join_conditions or {}).get(field_name)
        if condition:
            pipeline.append(MatchStage(identity.to_internal(condition)))
        pipeline.append(ProjectStage(_lookup_projection(options, identity)))

        stages.append(
            LookupStage(
                from_collection=options.collection_name,
                local_field=field_name,
                foreign_field=identity.internal_field,
                as_field=field_name,
                pipeline=tuple(pipeline),
            )
        )
    return stages


def build_sort(
    sort: Mapping[str, SortOrder | str] | None, identity: IdentityMapper = DEFAULT_IDENTITY
) -> dict[str, int]:
    """Map asc/desc to the store's sort directions, keeping field order."""
    if not sort:
        return {}
    return {
        identity.internal_field_name(name): ASCENDING if SortOrder(order) is SortOrder.ASC else DESCENDING
        for name, order in sort.items()
    }


def build_aliases(
    aliases: Mapping[str, str] | None, identity: IdentityMapper = DEFAULT_IDENTITY
) -> dict[str, Any]:
    """Map each alias to a copy of its source field.

    An alias of the external identifier receives the stringified internal key.
    """
    if not aliases:
        return {}
    fields: dict[str, Any] = {}
    for alias, source in aliases.items():
        if source == identity.external_field:
            fields[alias] = {"$toString": f"${identity.internal_field}"}
        else:
            fields[alias] = f"${source}"
    return fields
