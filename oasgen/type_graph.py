"""Canonical type graph built from document schemas.

Nodes live in an arena (TypeGraph.nodes) and refer to each other by integer
id, so cyclic schemas never produce cyclic Python object graphs. Scalar
nodes are neutral (base type + format); mapping them to Go types is the
emitter's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping

from .errors import MissingDiscriminator, UnknownDiscriminator


class TypeKind(str, Enum):
    STRUCT = "struct"
    ENUM = "enum"
    ALIAS = "alias"
    UNION = "union"
    MAP = "map"
    SLICE = "slice"
    SCALAR = "scalar"


@dataclass
class Constraints:
    """Validation constraints captured from a property schema."""

    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    format: str | None = None
    minimum: float | None = None
    maximum: float | None = None
    exclusive_minimum: bool = False
    exclusive_maximum: bool = False
    min_items: int | None = None
    max_items: int | None = None
    one_of: tuple[Any, ...] = ()

    def is_empty(self) -> bool:
        return self == Constraints()


@dataclass
class FieldNode:
    original_name: str  # wire name, never altered
    identifier: str
    type_id: int
    required: bool = False
    nullable: bool = False
    pointer: bool = False
    indirect: bool = False
    constraints: Constraints = field(default_factory=Constraints)
    description: str = ""
    deprecated: bool = False


@dataclass
class EmbeddedMember:
    type_id: int
    indirect: bool = False


@dataclass
class EnumConstant:
    identifier: str
    value: str


@dataclass
class UnionVariant:
    type_id: int
    identifier: str
    # discriminator values that select this variant
    values: list[str] = field(default_factory=list)


@dataclass
class DecodeTable:
    """Closed dispatch from discriminator value to union variant."""

    type_name: str
    property_name: str
    table: dict[str, UnionVariant] = field(default_factory=dict)

    def dispatch(self, payload: Mapping[str, Any]) -> UnionVariant:
        """Select the variant for a decoded JSON object.

        An absent or null property raises MissingDiscriminator; a value not
        in the table raises UnknownDiscriminator.
        """
        value = payload.get(self.property_name) if isinstance(payload, Mapping) else None
        if value is None:
            raise MissingDiscriminator(self.type_name, self.property_name)
        if not isinstance(value, str) or value not in self.table:
            raise UnknownDiscriminator(self.type_name, self.property_name, value)
        return self.table[value]

    @property
    def values(self) -> list[str]:
        return sorted(self.table)


@dataclass
class TypeNode:
    id: int
    kind: TypeKind
    # Go identifier; None for anonymous nodes (scalars, inline slices and maps)
    name: str | None = None
    schema_name: str | None = None
    location: str = ""
    description: str = ""
    deprecated: bool = False
    # scalar base (string/integer/number/boolean/any) and format
    base: str = ""
    format: str | None = None
    # alias target, slice item or map value
    target: int | None = None
    # struct
    fields: list[FieldNode] = field(default_factory=list)
    embedded: list[EmbeddedMember] = field(default_factory=list)
    catch_all: FieldNode | None = None
    # enum
    constants: list[EnumConstant] = field(default_factory=list)
    # allowed values kept as documentation for non-string enums
    enum_values: tuple[Any, ...] = ()
    # union
    variants: list[UnionVariant] = field(default_factory=list)
    decode_table: DecodeTable | None = None
    # substituted for a schema that could not be resolved
    placeholder: bool = False

    @property
    def is_named(self) -> bool:
        return self.name is not None


class TypeGraph:
    """Arena of TypeNodes for one generation run."""

    def __init__(self) -> None:
        self.nodes: list[TypeNode] = []
        # document schema name -> node id
        self.by_schema: dict[str, int] = {}
        self._scalars: dict[tuple[str, str | None], int] = {}

    def __getitem__(self, type_id: int) -> TypeNode:
        return self.nodes[type_id]

    def __len__(self) -> int:
        return len(self.nodes)

    def add(self, kind: TypeKind, **attrs: Any) -> TypeNode:
        node = TypeNode(id=len(self.nodes), kind=kind, **attrs)
        self.nodes.append(node)
        return node

    def scalar(self, base: str, fmt: str | None = None) -> int:
        """Return the shared node for a scalar base and format."""
        key = (base, fmt or None)
        if key not in self._scalars:
            self._scalars[key] = self.add(TypeKind.SCALAR, base=base, format=fmt or None).id
        return self._scalars[key]

    def any(self) -> int:
        return self.scalar("any")

    def slice_of(self, item_id: int) -> int:
        return self.add(TypeKind.SLICE, target=item_id).id

    def map_of(self, value_id: int) -> int:
        return self.add(TypeKind.MAP, target=value_id).id

    def lookup(self, schema_name: str) -> TypeNode | None:
        type_id = self.by_schema.get(schema_name)
        return self.nodes[type_id] if type_id is not None else None

    def named(self) -> list[TypeNode]:
        """Named nodes in declaration order."""
        return [n for n in self.nodes if n.name is not None]

    def unalias(self, type_id: int) -> TypeNode:
        """Follow alias edges to the first non-alias node."""
        seen: set[int] = set()
        node = self.nodes[type_id]
        while node.kind == TypeKind.ALIAS and node.target is not None and node.id not in seen:
            seen.add(node.id)
            node = self.nodes[node.target]
        return node

    def is_nilable(self, type_id: int) -> bool:
        """Slices, maps and any already have a nil value in Go."""
        node = self.unalias(type_id)
        if node.kind in (TypeKind.SLICE, TypeKind.MAP):
            return True
        return node.kind == TypeKind.SCALAR and node.base == "any"

    def flattened_fields(self, type_id: int) -> list[FieldNode]:
        """Own fields plus fields promoted from embedded members."""
        result: list[FieldNode] = []
        self._flatten(type_id, result, set())
        return result

    def _flatten(self, type_id: int, out: list[FieldNode], seen: set[int]) -> None:
        node = self.unalias(type_id)
        if node.id in seen or node.kind != TypeKind.STRUCT:
            return
        seen.add(node.id)
        for member in node.embedded:
            self._flatten(member.type_id, out, seen)
        out.extend(node.fields)

    def references(self, type_id: int) -> list[int]:
        """Ids a node points to directly."""
        node = self.nodes[type_id]
        refs: list[int] = []
        if node.target is not None:
            refs.append(node.target)
        refs.extend(f.type_id for f in node.fields)
        if node.catch_all is not None:
            refs.append(node.catch_all.type_id)
        refs.extend(m.type_id for m in node.embedded)
        refs.extend(v.type_id for v in node.variants)
        return refs

    def named_closure(self, type_ids: Iterable[int]) -> set[int]:
        """Named nodes reachable from type_ids, including named roots."""
        found: set[int] = set()
        visited: set[int] = set()
        stack = list(type_ids)
        while stack:
            tid = stack.pop()
            if tid in visited:
                continue
            visited.add(tid)
            if self.nodes[tid].name is not None:
                found.add(tid)
            stack.extend(self.references(tid))
        return found


def strongly_connected(edges: Mapping[int, Iterable[int]]) -> dict[int, int]:
    """Map every vertex to a component id (iterative Tarjan)."""
    index: dict[int, int] = {}
    low: dict[int, int] = {}
    component: dict[int, int] = {}
    on_stack: set[int] = set()
    stack: list[int] = []
    counter = 0
    comp_id = 0

    vertices = set(edges)
    for targets in edges.values():
        vertices.update(targets)

    for root in sorted(vertices):
        if root in index:
            continue
        work = [(root, iter(sorted(edges.get(root, ()))))]
        index[root] = low[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        while work:
            v, it = work[-1]
            advanced = False
            for w in it:
                if w not in index:
                    index[w] = low[w] = counter
                    counter += 1
                    stack.append(w)
                    on_stack.add(w)
                    work.append((w, iter(sorted(edges.get(w, ())))))
                    advanced = True
                    break
                if w in on_stack:
                    low[v] = min(low[v], index[w])
            if advanced:
                continue
            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[v])
            if low[v] == index[v]:
                while True:
                    w = stack.pop()
                    on_stack.discard(w)
                    component[w] = comp_id
                    if w == v:
                        break
                comp_id += 1
    return component
