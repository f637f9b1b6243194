"""Pipeline graph primitives: StageSpec and PipelineDefinition.

A PipelineDefinition is validated once, at definition time: duplicate names,
dependencies on undefined stages and cycles are rejected before any Run can
be created from it. After that it is immutable and can be shared by any
number of Runs.
"""

from __future__ import annotations

import sys
from collections import defaultdict
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum, auto
from types import MappingProxyType
from typing import Any

from conveyor.kernel.exceptions import (
    CycleDetectedError,
    DuplicateStageError,
    UnknownDependencyError,
)

_EMPTY_SET: frozenset[str] = frozenset()


class Color(Enum):
    """Colors for DFS cycle detection algorithm."""

    WHITE = auto()  # Unvisited
    GRAY = auto()  # In recursion stack
    BLACK = auto()  # Done


@dataclass(frozen=True, slots=True)
class AdapterInvocation:
    """Which adapter a stage calls and with what.

    Attributes
    ----------
    tool_id : str
        Registered adapter id (e.g. ``"maven"``, ``"sonarqube"``)
    params : Mapping[str, Any]
        Adapter parameters from the pipeline document
    credentials : tuple[str, ...]
        Names of the credentials the stage asks the vault for
    """

    tool_id: str
    params: Mapping[str, Any] = field(default_factory=dict)
    credentials: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))
        object.__setattr__(self, "credentials", tuple(self.credentials))


@dataclass(frozen=True, slots=True)
class StageSpec:
    """Immutable representation of one stage in a pipeline.

    Supports fluent chaining via ``.after()``. A stage whose adapter has the
    ``analysis`` capability is always gating.
    """

    name: str
    invocation: AdapterInvocation
    deps: frozenset[str] = field(default_factory=frozenset)
    gating: bool = False
    timeout: float | None = None
    capability: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", sys.intern(self.name))
        object.__setattr__(self, "deps", frozenset(sys.intern(d) for d in self.deps))
        if self.capability == "analysis":
            object.__setattr__(self, "gating", True)

    def after(self, *stage_names: str) -> StageSpec:
        """Return a copy of this stage that also depends on ``stage_names``.

        Examples
        --------
        >>> build = StageSpec("build", AdapterInvocation("maven")).after("checkout")
        >>> sorted(build.deps)
        ['checkout']
        """
        return StageSpec(
            name=self.name,
            invocation=self.invocation,
            deps=self.deps | frozenset(stage_names),
            gating=self.gating,
            timeout=self.timeout,
            capability=self.capability,
        )

    def __repr__(self) -> str:
        deps_str = f", deps={sorted(self.deps)}" if self.deps else ""
        gating_str = ", gating" if self.gating else ""
        return f"StageSpec('{self.name}', {self.invocation.tool_id}{deps_str}{gating_str})"


class PipelineDefinition:
    """A validated, immutable DAG of stages.

    Use :meth:`define` to construct one; it fails fast with
    :class:`DuplicateStageError`, :class:`UnknownDependencyError` or
    :class:`CycleDetectedError`.

    Examples
    --------
    >>> checkout = StageSpec("checkout", AdapterInvocation("git"))
    >>> build = StageSpec("build", AdapterInvocation("maven")).after("checkout")
    >>> pipeline = PipelineDefinition.define([checkout, build], name="app")
    >>> [[s.name for s in batch] for batch in pipeline.topological_order()]
    [['checkout'], ['build']]
    """

    __slots__ = ("name", "_stages", "_forward_edges", "_batches")

    def __init__(self, name: str, stages: Mapping[str, StageSpec], batches: list[list[str]]):
        self.name = name
        self._stages: Mapping[str, StageSpec] = MappingProxyType(dict(stages))
        forward: defaultdict[str, set[str]] = defaultdict(set)
        for stage in stages.values():
            for dep in stage.deps:
                forward[dep].add(stage.name)
        self._forward_edges: dict[str, frozenset[str]] = {
            k: frozenset(v) for k, v in forward.items()
        }
        self._batches: tuple[tuple[str, ...], ...] = tuple(tuple(b) for b in batches)

    @classmethod
    def define(cls, stages: Iterable[StageSpec], name: str = "pipeline") -> PipelineDefinition:
        """Validate ``stages`` and build a PipelineDefinition.

        Raises
        ------
        DuplicateStageError
            If two stages share a name.
        UnknownDependencyError
            If a stage depends on a name that is not defined.
        CycleDetectedError
            If the dependencies contain a cycle.
        """
        by_name: dict[str, StageSpec] = {}
        for stage in stages:
            if stage.name in by_name:
                raise DuplicateStageError(stage.name)
            by_name[stage.name] = stage

        for stage in by_name.values():
            for dep in sorted(stage.deps):
                if dep not in by_name:
                    raise UnknownDependencyError(stage.name, dep)

        if cycle := cls.detect_cycle({s.name: s.deps for s in by_name.values()}):
            raise CycleDetectedError(cycle)

        return cls(name, by_name, cls._compute_batches(by_name))

    @staticmethod
    def detect_cycle(graph: Mapping[str, frozenset[str] | set[str]]) -> list[str] | None:
        """Detect a cycle using DFS with three-state coloring.

        Returns
        -------
        list[str] | None
            The cycle as a closed path (first == last), or None

        Examples
        --------
        >>> PipelineDefinition.detect_cycle({"a": {"b"}, "b": {"c"}, "c": {"a"}})
        ['a', 'b', 'c', 'a']
        >>> PipelineDefinition.detect_cycle({"a": {"b"}, "b": set()}) is None
        True
        """
        colors = dict.fromkeys(graph, Color.WHITE)

        def dfs(node: str, path: list[str]) -> list[str] | None:
            if colors[node] == Color.GRAY:
                return path[path.index(node) :] + [node]
            if colors[node] == Color.BLACK:
                return None

            colors[node] = Color.GRAY
            path.append(node)
            for dep in sorted(graph.get(node, _EMPTY_SET)):
                if dep in colors and (result := dfs(dep, path)):
                    return result
            path.pop()
            colors[node] = Color.BLACK
            return None

        for node in sorted(graph):
            if colors[node] == Color.WHITE and (result := dfs(node, [])):
                return result
        return None

    @staticmethod
    def _compute_batches(stages: Mapping[str, StageSpec]) -> list[list[str]]:
        """Kahn's algorithm, grouping every zero in-degree layer into one batch."""
        in_degrees = {name: len(stage.deps) for name, stage in stages.items()}
        dependents: defaultdict[str, list[str]] = defaultdict(list)
        for stage in stages.values():
            for dep in stage.deps:
                dependents[dep].append(stage.name)

        batches: list[list[str]] = []
        while in_degrees:
            current = sorted(name for name, degree in in_degrees.items() if degree == 0)
            if not current:
                # define() rejects cycles first; this guards direct construction
                raise CycleDetectedError(sorted(in_degrees))
            batches.append(current)
            for name in current:
                del in_degrees[name]
                for dependent in dependents[name]:
                    if dependent in in_degrees:
                        in_degrees[dependent] -= 1
        return batches

    def topological_order(self) -> list[list[StageSpec]]:
        """Stage batches in execution order.

        Every stage appears exactly once; all dependencies of a stage appear
        in earlier batches. Stages inside a batch have no mutual ordering.
        """
        return [[self._stages[name] for name in batch] for batch in self._batches]

    def batch_names(self) -> list[list[str]]:
        """Same as :meth:`topological_order` but with stage names only."""
        return [list(batch) for batch in self._batches]

    def dependents(self, name: str) -> frozenset[str]:
        """Stages that directly depend on ``name``."""
        return self._forward_edges.get(name, _EMPTY_SET)

    def descendants(self, name: str) -> frozenset[str]:
        """All stages transitively downstream of ``name`` (excluding it)."""
        seen: set[str] = set()
        stack = list(self.dependents(name))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.dependents(current))
        return frozenset(seen)

    def ancestors(self, name: str) -> frozenset[str]:
        """All stages transitively upstream of ``name`` (excluding it)."""
        seen: set[str] = set()
        stack = list(self._stages[name].deps)
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._stages[current].deps)
        return frozenset(seen)

    @property
    def stages(self) -> Mapping[str, StageSpec]:
        return self._stages

    def __getitem__(self, name: str) -> StageSpec:
        return self._stages[name]

    def __contains__(self, name: object) -> bool:
        return name in self._stages

    def __iter__(self) -> Iterator[StageSpec]:
        for batch in self._batches:
            for name in batch:
                yield self._stages[name]

    def __len__(self) -> int:
        return len(self._stages)

    def __repr__(self) -> str:
        batches = len(self._batches)
        return f"PipelineDefinition('{self.name}', stages={len(self)}, batches={batches})"
