"""Resolve document schemas into the canonical type graph.

Handles:
- $ref aliases (#/components/schemas/X and #/definitions/X), dangling refs
- allOf composition (embedded structs, merged inline members)
- oneOf/anyOf unions with discriminator decode tables
- string enums (one constant per value), non-string enum fallback
- arrays, maps (additionalProperties) and struct catch-all fields
- hoisting of inline objects, unions and enums to named types
- nullability from all three dialect spellings
- validation constraints on fields
- reference cycles (by-value struct edges on a cycle become pointers)
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from .document import DocumentModel, SchemaNode, schema_ref_name
from .errors import IssueKind, IssueList
from .naming import IdentifierAllocator, NameScope
from .type_graph import (
    Constraints,
    DecodeTable,
    EmbeddedMember,
    EnumConstant,
    FieldNode,
    TypeGraph,
    TypeKind,
    TypeNode,
    UnionVariant,
    strongly_connected,
)

logger = logging.getLogger(__name__)

_SCALAR_KINDS = frozenset({"string", "integer", "number", "boolean"})
_URL_FORMATS = frozenset({"uri", "url"})
# Punctuation encoding/json accepts in a struct tag name
_TAG_PUNCTUATION = frozenset("!#$%&()*+-./:;<=>?@[]^_{|}~ ")


def _is_catch_all(value: Any) -> bool:
    """additionalProperties: true or a schema (possibly {}) allows extra keys."""
    return value is True or isinstance(value, Mapping)


def is_json_tag_name(name: str) -> bool:
    """Whether Go's encoding/json reads ``name`` back verbatim from a json tag."""
    return bool(name) and all(c.isalnum() or c in _TAG_PUNCTUATION for c in name)


def _enum_values(sn: SchemaNode) -> list[Any]:
    return [v for v in sn.enum or () if v is not None]


def _is_string_enum(sn: SchemaNode) -> bool:
    values = _enum_values(sn)
    if sn.types:
        return sn.types == ("string",)
    return bool(values) and all(isinstance(v, str) for v in values)


def _enum_base(sn: SchemaNode) -> str:
    """Scalar base for a non-string enum."""
    if len(sn.types) == 1:
        return sn.types[0]
    values = _enum_values(sn)
    if values and all(isinstance(v, bool) for v in values):
        return "boolean"
    if values and all(isinstance(v, int) and not isinstance(v, bool) for v in values):
        return "integer"
    if values and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
        return "number"
    return "any"


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


class TypeResolver:
    """Build TypeNodes for every named schema and for inline schemas on demand.

    All named schemas are registered before any is built, so forward and
    cyclic references always resolve to an existing node id.
    """

    def __init__(
        self,
        document: DocumentModel,
        graph: TypeGraph,
        allocator: IdentifierAllocator,
        issues: IssueList,
        use_pointers: bool = True,
    ) -> None:
        self.document = document
        self.graph = graph
        self.allocator = allocator
        self.issues = issues
        self.use_pointers = use_pointers
        self._pending: dict[int, SchemaNode] = {}
        self._inline_stack: set[int] = set()
        self._kinds: dict[str, TypeKind] = {}

    @property
    def package(self) -> NameScope:
        return self.allocator.package

    def schema_location(self, name: str) -> str:
        if self.document.is_oas2:
            return f"definitions.{name}"
        return f"components.schemas.{name}"

    # ------------------------------------------------------------------
    # Named schemas
    # ------------------------------------------------------------------

    def resolve_all(self) -> TypeGraph:
        """Register, build and cycle-check every named schema."""
        schemas = self.document.schemas
        names = sorted(schemas)

        for name in names:
            location = self.schema_location(name)
            sn = SchemaNode.from_raw(schemas[name], name)
            node = self.graph.add(
                self._classify(name, frozenset()),
                name=self.package.allocate(name, location),
                schema_name=name,
                location=location,
                description=sn.description,
                deprecated=bool(sn.raw.get("deprecated")),
            )
            self.graph.by_schema[name] = node.id
            self._pending[node.id] = sn

        for name in names:
            self._ensure_built(self.graph.by_schema[name])
        self.mark_indirection()

        logger.debug("resolved %d schemas into %d type nodes", len(names), len(self.graph))
        return self.graph

    def _classify(self, name: str, seen: frozenset[str]) -> TypeKind:
        if name in self._kinds:
            return self._kinds[name]
        sn = SchemaNode.from_raw(self.document.schemas.get(name), name)
        kind = self._classify_node(sn, seen | {name})
        self._kinds[name] = kind
        return kind

    def _classify_node(self, sn: SchemaNode, seen: frozenset[str]) -> TypeKind:
        if sn.kind == "ref":
            return TypeKind.STRUCT if sn.properties else TypeKind.ALIAS
        if sn.kind == "allOf":
            if len(sn.all_of) == 1 and not sn.properties:
                member = SchemaNode.from_raw(sn.all_of[0])
                if member.kind == "ref" and not member.properties:
                    if self._ultimate_kind(member.ref, seen) != TypeKind.STRUCT:
                        return TypeKind.ALIAS
            return TypeKind.STRUCT
        if sn.kind == "oneOf":
            return TypeKind.UNION
        if sn.kind == "enum":
            return TypeKind.ENUM if _is_string_enum(sn) else TypeKind.ALIAS
        if sn.kind == "object":
            if not sn.properties and _is_catch_all(sn.additional_properties):
                return TypeKind.MAP
            return TypeKind.STRUCT
        if sn.kind == "array":
            return TypeKind.SLICE
        return TypeKind.ALIAS

    def _ultimate_kind(self, ref: str | None, seen: frozenset[str]) -> TypeKind | None:
        """Kind at the end of a chain of named aliases, None if unknown."""
        name = schema_ref_name(ref or "")
        while name is not None and name in self.document.schemas and name not in seen:
            seen = seen | {name}
            kind = self._classify(name, seen)
            if kind != TypeKind.ALIAS:
                return kind
            sn = SchemaNode.from_raw(self.document.schemas[name], name)
            if sn.kind == "ref":
                name = schema_ref_name(sn.ref or "")
            elif sn.kind == "allOf":
                name = schema_ref_name(SchemaNode.from_raw(sn.all_of[0]).ref or "")
            else:
                return kind
        return None

    def _ensure_built(self, type_id: int) -> None:
        sn = self._pending.pop(type_id, None)
        if sn is None:
            return
        node = self.graph[type_id]
        self._fill(node, sn, node.location)

    def _fill(self, node: TypeNode, sn: SchemaNode, location: str) -> None:
        if node.kind == TypeKind.STRUCT:
            self._fill_struct(node, sn, location)
        elif node.kind == TypeKind.ENUM:
            self._fill_enum(node, sn, location)
        elif node.kind == TypeKind.UNION:
            self._fill_union(node, sn, location)
        elif node.kind == TypeKind.MAP:
            node.target = self._map_value(sn, node.name or "", location)
        elif node.kind == TypeKind.SLICE:
            node.target = self.resolve_schema(sn.items, f"{node.name}Item", f"{location}.items")
        else:
            self._fill_alias(node, sn, location)

    # ------------------------------------------------------------------
    # Inline schemas
    # ------------------------------------------------------------------

    def resolve_schema(self, raw: Any, hint: str, location: str) -> int:
        """Resolve an inline schema, hoisting it to a named type when needed.

        hint is the identifier a hoisted type is derived from.
        """
        if not isinstance(raw, Mapping):
            return self.graph.any()
        key = id(raw)
        if key in self._inline_stack:
            self.issues.critical(location, "cyclic inline schema; substituted with any")
            return self.graph.any()
        self._inline_stack.add(key)
        try:
            return self._resolve_node(SchemaNode.from_raw(raw), hint, location)
        finally:
            self._inline_stack.discard(key)

    def _resolve_node(self, sn: SchemaNode, hint: str, location: str) -> int:
        kind = sn.kind
        if kind == "ref":
            if sn.properties:
                return self._hoist(TypeKind.STRUCT, sn, hint, location)
            return self._ref_target(sn.ref or "", location, hint)
        if kind == "allOf":
            if len(sn.all_of) == 1 and not sn.properties:
                member = SchemaNode.from_raw(sn.all_of[0])
                if member.kind == "ref" and not member.properties:
                    return self._ref_target(member.ref or "", f"{location}.allOf[0]", hint)
            return self._hoist(TypeKind.STRUCT, sn, hint, location)
        if kind == "oneOf":
            return self._hoist(TypeKind.UNION, sn, hint, location)
        if kind == "enum":
            if _is_string_enum(sn):
                return self._hoist(TypeKind.ENUM, sn, hint, location)
            self._non_string_enum_warning(sn, location)
            base = _enum_base(sn)
            return self.graph.scalar(base, sn.format if base != "any" else None)
        if kind == "object":
            if sn.properties:
                return self._hoist(TypeKind.STRUCT, sn, hint, location)
            if _is_catch_all(sn.additional_properties):
                return self.graph.map_of(self._map_value(sn, hint, location))
            return self.graph.map_of(self.graph.any())
        if kind == "array":
            return self.graph.slice_of(
                self.resolve_schema(sn.items, f"{hint}Item", f"{location}.items")
            )
        if kind in _SCALAR_KINDS:
            return self.graph.scalar(kind, sn.format)
        if sn.is_ambiguous_type:
            self.issues.warning(
                location,
                f"schema allows multiple types {list(sn.types)}; generated as any",
            )
        return self.graph.any()

    def _hoist(self, kind: TypeKind, sn: SchemaNode, hint: str, location: str) -> int:
        node = self.graph.add(
            kind,
            name=self.package.allocate(hint, location),
            location=location,
            description=sn.description,
            deprecated=bool(sn.raw.get("deprecated")),
        )
        self._fill(node, sn, location)
        return node.id

    def _ref_target(self, ref: str, location: str, hint: str = "") -> int:
        name = schema_ref_name(ref)
        if name is not None:
            type_id = self.graph.by_schema.get(name)
            if type_id is not None:
                return type_id
            self.issues.critical(location, f"dangling reference {ref}; substituted with any")
            return self.graph.any()
        if ref.startswith("#/"):
            # local pointer into another schema, e.g. #/components/schemas/A/properties/b
            target = self.document.resolve_pointer(ref)
            if isinstance(target, Mapping):
                return self.resolve_schema(target, hint or ref.rsplit("/", 1)[-1], location)
            self.issues.critical(location, f"dangling reference {ref}; substituted with any")
            return self.graph.any()
        self.issues.critical(location, f"external reference {ref} is not supported; substituted with any")
        return self.graph.any()

    def _map_value(self, sn: SchemaNode, hint: str, location: str) -> int:
        value = sn.additional_properties
        if isinstance(value, Mapping) and value:
            return self.resolve_schema(value, f"{hint}Value", f"{location}.additionalProperties")
        return self.graph.any()

    # ------------------------------------------------------------------
    # Aliases and enums
    # ------------------------------------------------------------------

    def _fill_alias(self, node: TypeNode, sn: SchemaNode, location: str) -> None:
        if sn.kind in ("ref", "allOf"):
            ref = sn.ref if sn.kind == "ref" else SchemaNode.from_raw(sn.all_of[0]).ref
            target = self._ref_target(ref or "", location, node.name or "")
            self._ensure_built(target)
            if self._alias_loops(node.id, target):
                self.issues.critical(location, f"circular alias through {ref}; substituted with any")
                node.target = self.graph.any()
                node.placeholder = True
                return
            node.target = target
            return
        if sn.kind == "enum":
            self._non_string_enum_warning(sn, location)
            base = _enum_base(sn)
            node.enum_values = tuple(_enum_values(sn))
            node.target = self.graph.scalar(base, sn.format if base != "any" else None)
            return
        if sn.kind in _SCALAR_KINDS:
            node.target = self.graph.scalar(sn.kind, sn.format)
            return
        if sn.is_ambiguous_type:
            self.issues.warning(
                location,
                f"schema allows multiple types {list(sn.types)}; generated as any",
            )
        node.target = self.graph.any()

    def _alias_loops(self, node_id: int, target: int) -> bool:
        seen: set[int] = set()
        current: int | None = target
        while current is not None and current not in seen:
            if current == node_id:
                return True
            seen.add(current)
            candidate = self.graph[current]
            if candidate.kind != TypeKind.ALIAS:
                return False
            current = candidate.target
        return False

    def _non_string_enum_warning(self, sn: SchemaNode, location: str) -> None:
        self.issues.warning(
            location,
            f"enum of non-string values {_enum_values(sn)!r} is generated as a plain "
            f"{_enum_base(sn)} type; allowed values are kept as documentation",
        )

    def _fill_enum(self, node: TypeNode, sn: SchemaNode, location: str) -> None:
        node.base = "string"
        seen: set[str] = set()
        for value in _enum_values(sn):
            text = str(value)
            if text in seen:
                continue
            seen.add(text)
            suffix = text if text else "Empty"
            node.constants.append(EnumConstant(
                identifier=self.package.allocate(f"{node.name} {suffix}", location),
                value=text,
            ))

    # ------------------------------------------------------------------
    # Unions
    # ------------------------------------------------------------------

    def _fill_union(self, node: TypeNode, sn: SchemaNode, location: str) -> None:
        scope = self.allocator.new_scope(f"{node.name} variants")
        for i, member in enumerate(sn.one_of):
            member_location = f"{location}.oneOf[{i}]"
            msn = SchemaNode.from_raw(member)
            if msn.kind == "ref" and not msn.properties:
                type_id = self._ref_target(msn.ref or "", member_location)
            else:
                type_id = self.resolve_schema(member, f"{node.name}Variant{i}", member_location)
            label = self.graph[type_id].name or f"Variant{i}"
            node.variants.append(UnionVariant(
                type_id=type_id,
                identifier=scope.allocate(label, member_location),
            ))

        disc = sn.discriminator
        if disc is None:
            self.issues.info(
                IssueKind.UNSUPPORTED_FEATURE,
                location,
                "union without discriminator is generated as a struct of pointer variants",
            )
            return
        node.decode_table = self._decode_table(node, disc.property_name, disc.mapping, location)

    def _decode_table(
        self, node: TypeNode, property_name: str, mapping: Mapping[str, str], location: str,
    ) -> DecodeTable:
        table = DecodeTable(type_name=node.name or "", property_name=property_name)
        by_type = {v.type_id: v for v in node.variants}
        mapped: set[int] = set()

        for value in sorted(mapping):
            target = mapping[value]
            name = schema_ref_name(target) if target.startswith("#") else target
            type_id = self.graph.by_schema.get(name or "")
            variant = by_type.get(type_id) if type_id is not None else None
            if variant is None:
                self.issues.warning(
                    location,
                    f"discriminator value {value!r} maps to {target}, which is not a variant",
                )
                continue
            table.table[value] = variant
            variant.values.append(value)
            mapped.add(variant.type_id)

        for variant in node.variants:
            if variant.type_id in mapped:
                continue
            schema_name = self.graph[variant.type_id].schema_name
            if schema_name is None:
                self.issues.warning(
                    location,
                    f"variant {variant.identifier} has no schema name and no discriminator "
                    f"mapping; it cannot be selected by {property_name!r}",
                )
                continue
            if schema_name in table.table:
                self.issues.warning(
                    location,
                    f"implicit discriminator value {schema_name!r} is already mapped",
                )
                continue
            table.table[schema_name] = variant
            variant.values.append(schema_name)
        return table

    # ------------------------------------------------------------------
    # Structs
    # ------------------------------------------------------------------

    def _fill_struct(self, node: TypeNode, sn: SchemaNode, location: str) -> None:
        embedded: list[EmbeddedMember] = []
        props: dict[str, tuple[Any, str]] = {}
        required: set[str] = set()
        self._collect(sn, location, embedded, props, required)
        node.embedded = embedded

        scope = self.allocator.new_scope(f"{node.name} fields")
        promoted: dict[str, str] = {}
        for member in embedded:
            member_node = self.graph[member.type_id]
            if member_node.name:
                scope.reserve(member_node.name)
            for f in self.graph.flattened_fields(member.type_id):
                scope.reserve(f.identifier)
                promoted.setdefault(f.original_name, member_node.name or "")

        for wire in sorted(props):
            raw, prop_location = props[wire]
            if wire in promoted:
                self.issues.info(
                    IssueKind.NAMING_COLLISION_RESOLVED,
                    prop_location,
                    f"property {wire!r} is already provided by embedded {promoted[wire]}",
                )
                continue
            node.fields.append(
                self._build_field(node, scope, wire, raw, wire in required, prop_location)
            )

        if sn.properties and _is_catch_all(sn.additional_properties):
            node.catch_all = FieldNode(
                original_name="",
                identifier=scope.allocate("AdditionalProperties", location),
                type_id=self.graph.map_of(self._map_value(sn, node.name or "", location)),
            )

    def _collect(
        self,
        sn: SchemaNode,
        location: str,
        embedded: list[EmbeddedMember],
        props: dict[str, tuple[Any, str]],
        required: set[str],
    ) -> None:
        """Gather embedded members and properties of an allOf tree."""
        members: list[Any] = list(sn.all_of)
        if sn.kind == "ref":
            members = [{"$ref": sn.ref}]
        for i, member in enumerate(members):
            member_location = f"{location}.allOf[{i}]"
            msn = SchemaNode.from_raw(member)
            if msn.kind == "ref":
                self._embed(msn, member_location, embedded)
                for name, raw in msn.properties.items():
                    props[str(name)] = (raw, f"{member_location}.properties.{name}")
                required.update(msn.required)
            elif msn.kind == "oneOf":
                self.issues.warning(member_location, "oneOf inside allOf is not supported; member skipped")
            else:
                self._collect(msn, member_location, embedded, props, required)

        for name, raw in sn.properties.items():
            props[str(name)] = (raw, f"{location}.properties.{name}")
        required.update(sn.required)

    def _embed(self, msn: SchemaNode, location: str, embedded: list[EmbeddedMember]) -> None:
        target = self._ref_target(msn.ref or "", location)
        self._ensure_built(target)
        member = self.graph.unalias(target)
        if member.kind == TypeKind.STRUCT:
            if all(e.type_id != member.id for e in embedded):
                embedded.append(EmbeddedMember(type_id=member.id))
        elif not (member.kind == TypeKind.SCALAR and member.base == "any"):
            self.issues.warning(
                location,
                f"allOf member {msn.ref} is a {member.kind.value}, not an object; it cannot be embedded",
            )

    def _build_field(
        self,
        node: TypeNode,
        scope: NameScope,
        wire: str,
        raw: Any,
        required: bool,
        location: str,
    ) -> FieldNode:
        if not is_json_tag_name(wire):
            self.issues.warning(
                location,
                f"property name {wire!r} cannot be spelled in a Go json tag; the field will not decode under it",
            )
        identifier = scope.allocate(wire, location)
        psn = SchemaNode.from_raw(raw)
        type_id = self.resolve_schema(raw, f"{node.name}{identifier}", location)
        if self.graph[type_id].kind == TypeKind.ALIAS:
            self._ensure_built(type_id)
        nilable = self.graph.is_nilable(type_id)
        return FieldNode(
            original_name=wire,
            identifier=identifier,
            type_id=type_id,
            required=required,
            nullable=psn.nullable,
            pointer=not nilable and (psn.nullable or (not required and self.use_pointers)),
            constraints=self.constraints(psn, location),
            description=psn.description,
            deprecated=bool(psn.raw.get("deprecated")),
        )

    def constraints_for(self, raw: Any, location: str) -> Constraints:
        return self.constraints(SchemaNode.from_raw(raw), location)

    def constraints(self, sn: SchemaNode, location: str) -> Constraints:
        """Capture validation keywords; conflicting bounds are dropped."""
        raw = sn.raw
        c = Constraints(
            min_length=_as_int(raw.get("minLength")),
            max_length=_as_int(raw.get("maxLength")),
            pattern=raw.get("pattern") if isinstance(raw.get("pattern"), str) else None,
            format=sn.format if sn.format == "email" or sn.format in _URL_FORMATS else None,
            minimum=_as_number(raw.get("minimum")),
            maximum=_as_number(raw.get("maximum")),
            min_items=_as_int(raw.get("minItems")),
            max_items=_as_int(raw.get("maxItems")),
            one_of=tuple(_enum_values(sn)),
        )

        # bool in OAS 2.0/3.0, the bound itself in OAS 3.1
        for key, attr, flag in (
            ("exclusiveMinimum", "minimum", "exclusive_minimum"),
            ("exclusiveMaximum", "maximum", "exclusive_maximum"),
        ):
            value = raw.get(key)
            if isinstance(value, bool):
                setattr(c, flag, value and getattr(c, attr) is not None)
            elif _as_number(value) is not None:
                setattr(c, attr, value)
                setattr(c, flag, True)

        for low, high, label in (
            ("min_length", "max_length", "minLength/maxLength"),
            ("minimum", "maximum", "minimum/maximum"),
            ("min_items", "max_items", "minItems/maxItems"),
        ):
            lo, hi = getattr(c, low), getattr(c, high)
            if lo is not None and hi is not None and lo > hi:
                self.issues.critical(location, f"conflicting constraints {label}: {lo} > {hi}; both dropped")
                setattr(c, low, None)
                setattr(c, high, None)
                if low == "minimum":
                    c.exclusive_minimum = c.exclusive_maximum = False
        return c

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def mark_indirection(self) -> int:
        """Turn every by-value struct edge that lies on a cycle into a pointer.

        Returns the number of edges changed.
        """
        edges: dict[int, set[int]] = {}
        for node in self.graph.nodes:
            if node.kind != TypeKind.STRUCT:
                continue
            targets = edges.setdefault(node.id, set())
            for target in self._by_value_edges(node):
                targets.add(target)

        component = strongly_connected(edges)
        changed = 0
        for node in self.graph.nodes:
            if node.kind != TypeKind.STRUCT:
                continue
            for f in node.fields:
                target = self._by_value_target(f.type_id) if not f.pointer else None
                if target is None or component.get(target) != component.get(node.id):
                    continue
                f.indirect = True
                f.pointer = True
                changed += 1
                if f.required:
                    self.issues.info(
                        IssueKind.STRUCTURAL_ERROR,
                        f"{node.location}.properties.{f.original_name}",
                        f"required field {f.identifier} is a pointer to break a reference cycle",
                    )
            for member in node.embedded:
                target = self._by_value_target(member.type_id)
                if target is not None and component.get(target) == component.get(node.id):
                    member.indirect = True
                    changed += 1
        if changed:
            logger.debug("marked %d struct edges as indirect", changed)
        return changed

    def _by_value_target(self, type_id: int) -> int | None:
        target = self.graph.unalias(type_id)
        return target.id if target.kind == TypeKind.STRUCT else None

    def _by_value_edges(self, node: TypeNode) -> list[int]:
        result = []
        for f in node.fields:
            if not f.pointer:
                target = self._by_value_target(f.type_id)
                if target is not None:
                    result.append(target)
        for member in node.embedded:
            target = self._by_value_target(member.type_id)
            if target is not None:
                result.append(target)
        return result
