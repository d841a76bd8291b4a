"""Plan how declarations are spread across output units.

Everything goes into one unit unless a threshold is exceeded. Otherwise
operations are grouped (first tag, then first path segment, then fixed-size
chunks) and each type goes to the single group that uses it, or to the
shared base unit when several groups (or none) use it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .naming import sanitize_group_name
from .operations import OperationBinding
from .type_graph import TypeGraph

logger = logging.getLogger(__name__)

# Rough size of the generated code, used before anything is rendered
LINES_PER_OPERATION = 30
LINES_PER_TYPE = 15
DEFAULT_CHUNK_SIZE = 100


@dataclass
class FileGroup:
    name: str
    display_name: str
    operations: list[str] = field(default_factory=list)
    types: list[str] = field(default_factory=list)
    estimated_lines: int = 0
    tag: str = ""
    path_prefix: str = ""


@dataclass
class SplitPlan:
    needs_split: bool = False
    strategy: str = ""
    groups: list[FileGroup] = field(default_factory=list)
    shared_types: list[str] = field(default_factory=list)
    total_operations: int = 0
    total_types: int = 0
    estimated_lines: int = 0

    def group_of(self, method_name: str) -> FileGroup | None:
        for group in self.groups:
            if method_name in group.operations:
                return group
        return None


def path_prefix(path: str) -> str:
    """First path segment; a parameter segment or an empty path gives 'default'."""
    segment = path.lstrip("/").split("/", 1)[0]
    if not segment or segment.startswith("{"):
        return "default"
    return segment


class FileSplitPlanner:
    def __init__(
        self,
        max_lines_per_file: int = 2000,
        max_types_per_file: int = 200,
        max_operations_per_file: int = 100,
        split_by_tag: bool = True,
        split_by_path_prefix: bool = True,
    ) -> None:
        self.max_lines_per_file = max_lines_per_file
        self.max_types_per_file = max_types_per_file
        self.max_operations_per_file = max_operations_per_file
        self.split_by_tag = split_by_tag
        self.split_by_path_prefix = split_by_path_prefix

    def needs_split(self, operations: int, types: int, lines: int) -> bool:
        if self.max_operations_per_file > 0 and operations > self.max_operations_per_file:
            return True
        if self.max_types_per_file > 0 and types > self.max_types_per_file:
            return True
        return self.max_lines_per_file > 0 and lines > self.max_lines_per_file

    def plan(self, graph: TypeGraph, operations: list[OperationBinding]) -> SplitPlan:
        named = graph.named()
        plan = SplitPlan(
            total_operations=len(operations),
            total_types=len(named),
            estimated_lines=len(operations) * LINES_PER_OPERATION + len(named) * LINES_PER_TYPE,
        )
        if not self.needs_split(plan.total_operations, plan.total_types, plan.estimated_lines):
            plan.shared_types = sorted(n.name for n in named if n.name)
            return plan

        strategy, grouped = self._group(operations)
        if len(grouped) <= 1:
            plan.shared_types = sorted(n.name for n in named if n.name)
            return plan

        plan.needs_split = True
        plan.strategy = strategy

        usage: dict[int, set[str]] = {}
        for name, ops in grouped.items():
            roots = [tid for op in ops for tid in op.type_ids()]
            for tid in graph.named_closure(roots):
                usage.setdefault(tid, set()).add(name)

        for name, ops in grouped.items():
            group = FileGroup(
                name=name,
                display_name=self._display_name(strategy, name, ops),
                operations=[op.method_name for op in ops],
            )
            if strategy == "tag":
                group.tag = group.display_name
            elif strategy == "path":
                group.path_prefix = group.display_name
            plan.groups.append(group)

        by_name = {g.name: g for g in plan.groups}
        for node in named:
            groups = usage.get(node.id, set())
            if len(groups) == 1:
                by_name[next(iter(groups))].types.append(node.name or "")
            else:
                plan.shared_types.append(node.name or "")
        plan.shared_types.sort()
        for group in plan.groups:
            group.types.sort()
            group.estimated_lines = (
                len(group.operations) * LINES_PER_OPERATION + len(group.types) * LINES_PER_TYPE
            )

        logger.debug(
            "split %d operations into %d groups by %s (%d shared types)",
            plan.total_operations, len(plan.groups), strategy, len(plan.shared_types),
        )
        return plan

    def _group(self, operations: list[OperationBinding]) -> tuple[str, dict[str, list[OperationBinding]]]:
        if self.split_by_tag and operations and all(op.operation.tags for op in operations):
            groups = self._by_key(operations, lambda op: op.operation.tags[0])
            if len(groups) > 1:
                return "tag", groups
        if self.split_by_path_prefix:
            groups = self._by_key(operations, lambda op: path_prefix(op.path))
            if len(groups) > 1:
                return "path", groups
        return "chunk", self._chunks(operations)

    @staticmethod
    def _by_key(operations, key) -> dict[str, list[OperationBinding]]:
        groups: dict[str, list[OperationBinding]] = {}
        for op in operations:
            groups.setdefault(sanitize_group_name(key(op)), []).append(op)
        return {name: groups[name] for name in sorted(groups)}

    def _chunks(self, operations: list[OperationBinding]) -> dict[str, list[OperationBinding]]:
        size = self.max_operations_per_file or DEFAULT_CHUNK_SIZE
        return {
            f"part{i // size + 1}": operations[i:i + size]
            for i in range(0, len(operations), size)
        }

    @staticmethod
    def _display_name(strategy: str, name: str, ops: list[OperationBinding]) -> str:
        if strategy == "tag":
            return ops[0].operation.tags[0]
        if strategy == "path":
            return path_prefix(ops[0].path)
        return name
