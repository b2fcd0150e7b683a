# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Aggregation pipeline stages.

The compiler only ever emits the stages defined here. Each stage renders
itself to the dictionary form the store executes with ``to_document()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class MatchStage:
    filter: dict[str, Any]

    def to_document(self) -> dict[str, Any]:
        return {"$match": self.filter}


@dataclass(frozen=True)
class LookupStage:
    """Resolves ``local_field`` against ``foreign_field`` of another collection.

    The resolved documents replace the field value as a list, after running
    ``pipeline`` on the target collection.
    """

    from_collection: str
    local_field: str
    foreign_field: str
    as_field: str
    pipeline: tuple[Stage, ...] = ()

    def to_document(self) -> dict[str, Any]:
        return {
            "$lookup": {
                "from": self.from_collection,
                "localField": self.local_field,
                "foreignField": self.foreign_field,
                "as": self.as_field,
                "pipeline": render_pipeline(self.pipeline),
            }
        }


@dataclass(frozen=True)
class AddFieldsStage:
    fields: dict[str, Any]

    def to_document(self) -> dict[str, Any]:
        return {"$addFields": self.fields}


@dataclass(frozen=True)
class ProjectStage:
    fields: dict[str, Any]

    def to_document(self) -> dict[str, Any]:
        return {"$project": self.fields}


@dataclass(frozen=True)
class SortStage:
    keys: dict[str, int]

    def to_document(self) -> dict[str, Any]:
        return {"$sort": self.keys}


@dataclass(frozen=True)
class SkipStage:
    count: int

    def to_document(self) -> dict[str, Any]:
        return {"$skip": self.count}


@dataclass(frozen=True)
class LimitStage:
    count: int

    def to_document(self) -> dict[str, Any]:
        return {"$limit": self.count}


@dataclass(frozen=True)
class CountStage:
    output_field: str = field(default="totalCount")

    def to_document(self) -> dict[str, Any]:
        return {"$count": self.output_field}


Stage = (
    MatchStage
    | LookupStage
    | AddFieldsStage
    | ProjectStage
    | SortStage
    | SkipStage
    | LimitStage
    | CountStage
)


def render_pipeline(stages: tuple[Stage, ...] | list[Stage]) -> list[dict[str, Any]]:
    """Render stages to the list-of-dicts form sent to the store."""
    return [stage.to_document() for stage in stages]
