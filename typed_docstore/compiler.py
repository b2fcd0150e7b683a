# SPDX-License-Identifier: MIT
# Copyright (c) 2025 typed-docstore contributors

"""Query compiler.

Stage order of the main pipeline is fixed:

    match -> lookup (one per join) -> addFields (aliases) -> project -> sort -> skip -> limit

The count pipeline is the match stage followed by a count stage, so the
total only depends on the where clause.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .builders import build_aliases, build_lookup, build_match, build_projection, build_sort
from .identity import DEFAULT_IDENTITY, IdentityMapper
from .query import Predicate, Query
from .stages import (
    AddFieldsStage,
    CountStage,
    LimitStage,
    MatchStage,
    ProjectStage,
    SkipStage,
    SortStage,
    Stage,
    render_pipeline,
)

logger = logging.getLogger(__name__)

COUNT_FIELD = "totalCount"


@dataclass(frozen=True)
class CompiledQuery:
    """Main pipeline and count pipeline of one query."""

    pipeline: tuple[Stage, ...]
    count_pipeline: tuple[Stage, ...]

    def render(self) -> list[dict[str, Any]]:
        return render_pipeline(self.pipeline)

    def render_count(self) -> list[dict[str, Any]]:
        return render_pipeline(self.count_pipeline)


class QueryCompiler:
    """Compiles :class:`Query` descriptors into pipeline stages."""

    def __init__(self, identity: IdentityMapper | None = None):
        self.identity = identity or DEFAULT_IDENTITY

    def match_stage(self, where: Predicate | Mapping[str, Any] | None) -> MatchStage | None:
        """Return the match stage for a where clause, or None when it is empty."""
        match_filter = self.identity.to_internal(build_match(where))
        if not match_filter:
            return None
        return MatchStage(match_filter)

    def compile_count(self, where: Predicate | Mapping[str, Any] | None) -> tuple[Stage, ...]:
        """Build the count pipeline: the match stage (if any) and a count stage."""
        stages: list[Stage] = []
        match = self.match_stage(where)
        if match is not None:
            stages.append(match)
        stages.append(CountStage(COUNT_FIELD))
        return tuple(stages)

    def compile(self, query: Query, single: bool = False) -> CompiledQuery:
        """Compile a query.

        Args:
            query: The query descriptor
            single: If True, skip/limit are ignored and the pipeline ends with
                a limit of one

        Returns:
            CompiledQuery with the main and count pipelines
        """
        stages: list[Stage] = []

        match = self.match_stage(query.where)
        if match is not None:
            stages.append(match)

        stages.extend(build_lookup(query.join, query.join_conditions, self.identity))

        aliases = build_aliases(query.aliases, self.identity)
        if aliases:
            stages.append(AddFieldsStage(aliases))

        projection = build_projection(query.select, self.identity)
        if projection:
            stages.append(ProjectStage(projection))

        sort = build_sort(query.sort, self.identity)
        if sort:
            stages.append(SortStage(sort))

        if single:
            stages.append(LimitStage(1))
        else:
            if query.skip is not None and query.skip > 0:
                stages.append(SkipStage(query.skip))
            if query.limit is not None and query.limit > 0:
                stages.append(LimitStage(query.limit))

        compiled = CompiledQuery(pipeline=tuple(stages), count_pipeline=self.compile_count(query.where))
        logger.debug("QueryCompiler: compiled %s", compiled.render())
        return compiled
