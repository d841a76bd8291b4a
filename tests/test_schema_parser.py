"""Tests for schema resolution into the type graph."""

import pytest

from conftest import ANIMALS, PETSTORE, components, resolve
from oasgen.errors import IssueKind, MissingDiscriminator, Severity, UnknownDiscriminator
from oasgen.schema_parser import is_json_tag_name
from oasgen.type_graph import TypeKind


def _fields(resolver, name):
    node = resolver.graph.lookup(name)
    return {f.original_name: f for f in node.fields}


def _severities(issues, severity):
    return [i for i in issues if i.severity == severity]


class TestStructs:
    def test_named_schemas_registered(self):
        resolver, _ = resolve(PETSTORE)
        assert {n.name for n in resolver.graph.named()} >= {"Pet", "Status", "Error"}
        assert resolver.graph.lookup("Pet").kind == TypeKind.STRUCT

    def test_optional_field_is_pointer(self):
        resolver, _ = resolve(PETSTORE)
        fields = _fields(resolver, "Pet")
        assert fields["id"].identifier == "Id"
        assert fields["id"].pointer is True
        assert fields["id"].required is False

    def test_required_field_is_value(self):
        resolver, _ = resolve(PETSTORE)
        name = _fields(resolver, "Pet")["name"]
        assert name.required is True
        assert name.pointer is False
        assert name.constraints.min_length == 1
        assert name.constraints.max_length == 64

    def test_slice_field_never_pointer(self):
        resolver, _ = resolve(PETSTORE)
        tags = _fields(resolver, "Pet")["tags"]
        assert tags.pointer is False
        assert resolver.graph[tags.type_id].kind == TypeKind.SLICE

    def test_without_pointers(self):
        resolver, _ = resolve(PETSTORE, use_pointers=False)
        assert _fields(resolver, "Pet")["id"].pointer is False

    def test_nullable_required_is_pointer(self):
        resolver, _ = resolve(components(Thing={
            "type": "object",
            "required": ["label"],
            "properties": {"label": {"type": "string", "nullable": True}},
        }), use_pointers=False)
        label = _fields(resolver, "Thing")["label"]
        assert label.nullable is True
        assert label.pointer is True

    def test_untaggable_wire_names_warn(self):
        resolver, issues = resolve(components(Odd={
            "type": "object",
            "properties": {
                "a,b": {"type": "string"},
                'say"hi': {"type": "string"},
                "@id": {"type": "string"},
                "x-rate limit": {"type": "string"},
            },
        }))
        fields = _fields(resolver, "Odd")
        assert fields["a,b"].original_name == "a,b"
        warned = _severities(issues, Severity.WARNING)
        assert len(warned) == 2
        assert {w.location for w in warned} == {
            "components.schemas.Odd.properties.a,b",
            'components.schemas.Odd.properties.say"hi',
        }

    @pytest.mark.parametrize("name,valid", [
        ("id", True), ("@type", True), ("x-rate limit", True), ("naïve", True),
        ("a,b", False), ('a"b', False), ("a\\b", False), ("", False),
    ])
    def test_is_json_tag_name(self, name, valid):
        assert is_json_tag_name(name) is valid

    def test_fields_sorted_by_wire_name(self):
        resolver, _ = resolve(PETSTORE)
        node = resolver.graph.lookup("Pet")
        assert [f.original_name for f in node.fields] == ["id", "name", "status", "tags"]

    def test_colliding_field_names_keep_wire_names(self):
        resolver, issues = resolve(components(Doc={
            "type": "object",
            "properties": {"@id": {"type": "string"}, "id": {"type": "string"}},
        }))
        fields = _fields(resolver, "Doc")
        assert fields["@id"].identifier == "Id"
        assert fields["id"].identifier == "Id2"
        assert any(i.kind == IssueKind.NAMING_COLLISION_RESOLVED for i in issues)

    def test_catch_all(self):
        resolver, _ = resolve(components(Labels={
            "type": "object",
            "properties": {"name": {"type": "string"}},
            "additionalProperties": {"type": "string"},
        }))
        node = resolver.graph.lookup("Labels")
        assert node.catch_all is not None
        assert node.catch_all.identifier == "AdditionalProperties"
        assert resolver.graph[node.catch_all.type_id].kind == TypeKind.MAP

    def test_inline_object_hoisted(self):
        resolver, _ = resolve(components(Order={
            "type": "object",
            "properties": {"address": {"type": "object", "properties": {"city": {"type": "string"}}}},
        }))
        address = _fields(resolver, "Order")["address"]
        hoisted = resolver.graph[address.type_id]
        assert hoisted.name == "OrderAddress"
        assert hoisted.kind == TypeKind.STRUCT


class TestEnumsAndAliases:
    def test_string_enum_constants(self):
        resolver, _ = resolve(PETSTORE)
        status = resolver.graph.lookup("Status")
        assert status.kind == TypeKind.ENUM
        assert [c.identifier for c in status.constants] == [
            "StatusAvailable", "StatusPending", "StatusSold",
        ]
        assert [c.value for c in status.constants] == ["available", "pending", "sold"]

    def test_non_string_enum_warns(self):
        resolver, issues = resolve(components(Level={"type": "integer", "enum": [1, 2, 3]}))
        level = resolver.graph.lookup("Level")
        assert level.kind == TypeKind.ALIAS
        assert level.enum_values == (1, 2, 3)
        assert resolver.graph[level.target].base == "integer"
        (warning,) = _severities(issues, Severity.WARNING)
        assert "non-string" in warning.message

    def test_ref_alias(self):
        resolver, _ = resolve(components(
            Name={"type": "string"},
            Alias={"$ref": "#/components/schemas/Name"},
        ))
        alias = resolver.graph.lookup("Alias")
        assert alias.kind == TypeKind.ALIAS
        assert alias.target == resolver.graph.by_schema["Name"]

    def test_dangling_ref_is_critical(self):
        resolver, issues = resolve(components(Holder={
            "type": "object",
            "properties": {"thing": {"$ref": "#/components/schemas/Missing"}},
        }))
        thing = _fields(resolver, "Holder")["thing"]
        assert resolver.graph[thing.type_id].base == "any"
        (critical,) = _severities(issues, Severity.CRITICAL)
        assert "Missing" in critical.message

    def test_circular_alias(self):
        resolver, issues = resolve(components(
            A={"$ref": "#/components/schemas/B"},
            B={"$ref": "#/components/schemas/A"},
        ))
        assert _severities(issues, Severity.CRITICAL)
        assert any(n.placeholder for n in resolver.graph.named())

    def test_ambiguous_type_warns(self):
        resolver, issues = resolve(components(Mixed={"type": ["string", "integer"]}))
        assert resolver.graph[resolver.graph.lookup("Mixed").target].base == "any"
        assert _severities(issues, Severity.WARNING)


class TestConstraints:
    def test_conflicting_bounds_dropped(self):
        resolver, issues = resolve(components(Bad={
            "type": "object",
            "properties": {"code": {"type": "string", "minLength": 5, "maxLength": 2}},
        }))
        c = _fields(resolver, "Bad")["code"].constraints
        assert c.min_length is None
        assert c.max_length is None
        (critical,) = _severities(issues, Severity.CRITICAL)
        assert "minLength/maxLength" in critical.message

    def test_exclusive_bound_31_style(self):
        resolver, _ = resolve(components(Range={
            "type": "object",
            "properties": {"n": {"type": "number", "exclusiveMinimum": 0}},
        }))
        c = _fields(resolver, "Range")["n"].constraints
        assert c.minimum == 0
        assert c.exclusive_minimum is True

    def test_exclusive_bound_30_style(self):
        resolver, _ = resolve(components(Range={
            "type": "object",
            "properties": {"n": {"type": "integer", "maximum": 10, "exclusiveMaximum": True}},
        }))
        c = _fields(resolver, "Range")["n"].constraints
        assert c.maximum == 10
        assert c.exclusive_maximum is True

    def test_format_kept_only_for_email_and_url(self):
        resolver, _ = resolve(components(Contact={
            "type": "object",
            "properties": {
                "mail": {"type": "string", "format": "email"},
                "when": {"type": "string", "format": "date-time"},
            },
        }))
        fields = _fields(resolver, "Contact")
        assert fields["mail"].constraints.format == "email"
        assert fields["when"].constraints.format is None


class TestComposition:
    def test_all_of_embeds_and_flattens(self):
        resolver, _ = resolve(components(
            Base={"type": "object", "properties": {"x": {"type": "string"}}},
            Mid={"allOf": [
                {"$ref": "#/components/schemas/Base"},
                {"type": "object", "properties": {"y": {"type": "string"}}},
            ]},
            Top={"allOf": [
                {"$ref": "#/components/schemas/Mid"},
                {"type": "object", "properties": {"z": {"type": "string"}}},
            ]},
        ))
        graph = resolver.graph
        top = graph.lookup("Top")
        assert [graph[m.type_id].name for m in top.embedded] == ["Mid"]
        assert [f.original_name for f in graph.flattened_fields(top.id)] == ["x", "y", "z"]

    def test_promoted_property_not_duplicated(self):
        resolver, issues = resolve(components(
            Base={"type": "object", "properties": {"x": {"type": "string"}}},
            Child={"allOf": [
                {"$ref": "#/components/schemas/Base"},
                {"type": "object", "properties": {"x": {"type": "string"}, "w": {"type": "string"}}},
            ]},
        ))
        assert [f.original_name for f in resolver.graph.lookup("Child").fields] == ["w"]
        assert any("already provided" in i.message for i in issues)


class TestCycles:
    def test_optional_self_reference_terminates(self):
        resolver, _ = resolve(components(Node={
            "type": "object",
            "properties": {"next": {"$ref": "#/components/schemas/Node"}},
        }))
        node = resolver.graph.lookup("Node")
        assert node.fields[0].type_id == node.id
        assert node.fields[0].pointer is True

    def test_required_self_reference_becomes_indirect(self):
        resolver, issues = resolve(components(Node={
            "type": "object",
            "required": ["next"],
            "properties": {"next": {"$ref": "#/components/schemas/Node"}},
        }), use_pointers=False)
        field = resolver.graph.lookup("Node").fields[0]
        assert field.indirect is True
        assert field.pointer is True
        info = [i for i in issues if "reference cycle" in i.message]
        assert info and info[0].severity == Severity.INFO

    def test_mutual_recursion(self):
        resolver, _ = resolve(components(
            A={"type": "object", "required": ["b"], "properties": {"b": {"$ref": "#/components/schemas/B"}}},
            B={"type": "object", "required": ["a"], "properties": {"a": {"$ref": "#/components/schemas/A"}}},
        ), use_pointers=False)
        assert _fields(resolver, "A")["b"].indirect
        assert _fields(resolver, "B")["a"].indirect

    def test_acyclic_reference_stays_by_value(self):
        resolver, _ = resolve(components(
            Leaf={"type": "object", "properties": {"v": {"type": "string"}}},
            Tree={"type": "object", "required": ["leaf"], "properties": {"leaf": {"$ref": "#/components/schemas/Leaf"}}},
        ), use_pointers=False)
        leaf = _fields(resolver, "Tree")["leaf"]
        assert leaf.indirect is False
        assert leaf.pointer is False


class TestUnions:
    def test_variants(self):
        resolver, _ = resolve(ANIMALS)
        animal = resolver.graph.lookup("Animal")
        assert animal.kind == TypeKind.UNION
        assert [v.identifier for v in animal.variants] == ["Cat", "Dog", "Lizard"]

    def test_decode_table_values(self):
        resolver, _ = resolve(ANIMALS)
        table = resolver.graph.lookup("Animal").decode_table
        assert table.property_name == "petType"
        assert table.values == ["Lizard", "cat", "dog"]

    @pytest.mark.parametrize("value,variant", [("cat", "Cat"), ("dog", "Dog"), ("Lizard", "Lizard")])
    def test_dispatch(self, value, variant):
        resolver, _ = resolve(ANIMALS)
        table = resolver.graph.lookup("Animal").decode_table
        assert table.dispatch({"petType": value, "meows": True}).identifier == variant

    def test_unknown_value(self):
        resolver, _ = resolve(ANIMALS)
        table = resolver.graph.lookup("Animal").decode_table
        with pytest.raises(UnknownDiscriminator) as exc:
            table.dispatch({"petType": "fish"})
        assert exc.value.value == "fish"

    @pytest.mark.parametrize("payload", [{}, {"petType": None}])
    def test_missing_value(self, payload):
        resolver, _ = resolve(ANIMALS)
        table = resolver.graph.lookup("Animal").decode_table
        with pytest.raises(MissingDiscriminator):
            table.dispatch(payload)

    def test_non_string_value_is_unknown(self):
        resolver, _ = resolve(ANIMALS)
        table = resolver.graph.lookup("Animal").decode_table
        with pytest.raises(UnknownDiscriminator):
            table.dispatch({"petType": 7})

    def test_no_discriminator_hoists_variants(self):
        resolver, issues = resolve(ANIMALS)
        shape = resolver.graph.lookup("Shape")
        assert shape.decode_table is None
        assert [resolver.graph[v.type_id].name for v in shape.variants] == [
            "ShapeVariant0", "ShapeVariant1",
        ]
        assert any(
            i.severity == Severity.INFO and i.location == "components.schemas.Shape"
            for i in issues
        )

    def test_mapping_to_non_variant_warns(self):
        raw = components(
            Cat={"type": "object", "properties": {"kind": {"type": "string"}}},
            Rock={"type": "object"},
            Pet={
                "oneOf": [{"$ref": "#/components/schemas/Cat"}],
                "discriminator": {"propertyName": "kind", "mapping": {"rock": "#/components/schemas/Rock"}},
            },
        )
        resolver, issues = resolve(raw)
        assert resolver.graph.lookup("Pet").decode_table.values == ["Cat"]
        assert any("not a variant" in i.message for i in issues)
