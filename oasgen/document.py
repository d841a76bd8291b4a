"""Dialect-neutral document model.

The loader turns an OAS 2.0 or OAS 3.x document into these structures so the
resolver and binders never look at dialect-specific layout. Schemas stay raw
JSON Schema mappings; SchemaNode gives them a classified, read-only view.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

# HTTP methods in the order operations are visited within one path
HTTP_METHODS: tuple[str, ...] = (
    "get", "put", "post", "delete", "options", "head", "patch", "trace",
)

PARAM_LOCATIONS: tuple[str, ...] = ("path", "query", "header", "cookie")

SCHEMA_REF_PREFIXES: tuple[str, ...] = ("#/components/schemas/", "#/definitions/")

# Keys that only document a schema; a $ref next to these is still a plain alias
_ANNOTATION_KEYS = frozenset({
    "$ref", "description", "summary", "title", "example", "examples",
    "deprecated", "readOnly", "writeOnly", "externalDocs", "xml", "default",
    "$comment", "nullable", "x-nullable",
})


def schema_ref_name(ref: str) -> str | None:
    """Return the schema name a local $ref points to, or None."""
    for prefix in SCHEMA_REF_PREFIXES:
        if ref.startswith(prefix):
            name = ref[len(prefix):]
            if name and "/" not in name:
                return unescape_pointer(name)
    return None


def unescape_pointer(token: str) -> str:
    """Decode one JSON pointer reference token."""
    return token.replace("~1", "/").replace("~0", "~")


@dataclass(frozen=True)
class Discriminator:
    property_name: str
    mapping: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SchemaNode:
    """Classified view of one raw schema.

    kind is one of: ref, allOf, oneOf, enum, object, array, string, integer,
    number, boolean, any.
    """

    raw: Mapping[str, Any]
    kind: str
    name: str | None = None
    ref: str | None = None
    types: tuple[str, ...] = ()
    format: str | None = None
    nullable: bool = False
    required: frozenset[str] = frozenset()
    properties: Mapping[str, Any] = field(default_factory=dict)
    additional_properties: Any = None
    discriminator: Discriminator | None = None
    enum: tuple[Any, ...] | None = None
    items: Any = None
    all_of: tuple[Any, ...] = ()
    one_of: tuple[Any, ...] = ()
    description: str = ""

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | None, name: str | None = None) -> SchemaNode:
        if not isinstance(raw, Mapping):
            return cls(raw={}, kind="any", name=name)

        nullable = bool(raw.get("nullable") or raw.get("x-nullable"))

        raw_type = raw.get("type")
        if isinstance(raw_type, list):
            types = tuple(t for t in raw_type if t != "null")
            nullable = nullable or "null" in raw_type
        elif isinstance(raw_type, str) and raw_type != "null":
            types = (raw_type,)
        else:
            types = ()
            nullable = nullable or raw_type == "null"

        one_of: list[Any] = []
        for key in ("oneOf", "anyOf"):
            members = raw.get(key)
            if isinstance(members, list) and members:
                for member in members:
                    if isinstance(member, Mapping) and member.get("type") == "null" and len(member) == 1:
                        nullable = True
                        continue
                    one_of.append(member)
                break

        disc = None
        raw_disc = raw.get("discriminator")
        if isinstance(raw_disc, Mapping) and raw_disc.get("propertyName"):
            disc = Discriminator(
                property_name=str(raw_disc["propertyName"]),
                mapping={str(k): str(v) for k, v in (raw_disc.get("mapping") or {}).items()},
            )
        elif isinstance(raw_disc, str) and raw_disc:
            # OAS 2.0 spells the discriminator as a bare property name
            disc = Discriminator(property_name=raw_disc)

        enum = raw.get("enum")
        all_of = raw.get("allOf")
        properties = raw.get("properties")

        if isinstance(raw.get("$ref"), str):
            kind = "ref"
        elif isinstance(all_of, list) and all_of:
            kind = "allOf"
        elif one_of:
            kind = "oneOf"
        elif isinstance(enum, list) and enum:
            kind = "enum"
        elif len(types) == 1:
            kind = types[0]
        elif len(types) > 1:
            kind = "any"
        elif isinstance(properties, Mapping) or "additionalProperties" in raw:
            kind = "object"
        elif "items" in raw:
            kind = "array"
        else:
            kind = "any"

        return cls(
            raw=raw,
            kind=kind,
            name=name,
            ref=raw.get("$ref") if kind == "ref" else None,
            types=types,
            format=raw.get("format"),
            nullable=nullable,
            required=frozenset(str(r) for r in raw.get("required") or () if isinstance(r, str)),
            properties=properties if isinstance(properties, Mapping) else {},
            additional_properties=raw.get("additionalProperties"),
            discriminator=disc,
            enum=tuple(enum) if isinstance(enum, list) and enum else None,
            items=raw.get("items"),
            all_of=tuple(all_of) if isinstance(all_of, list) else (),
            one_of=tuple(one_of),
            description=str(raw.get("description") or ""),
        )

    @property
    def has_sibling_constraints(self) -> bool:
        """True when a $ref carries keys beyond annotations and extensions."""
        return any(
            key not in _ANNOTATION_KEYS and not key.startswith("x-")
            for key in self.raw
        )

    @property
    def is_ambiguous_type(self) -> bool:
        return len(self.types) > 1


@dataclass
class Parameter:
    name: str
    location: str
    required: bool = False
    schema: Mapping[str, Any] = field(default_factory=dict)
    description: str = ""
    deprecated: bool = False


@dataclass
class RequestBody:
    # content type -> schema (None when the media type declares no schema)
    content: dict[str, Mapping[str, Any] | None] = field(default_factory=dict)
    required: bool = False
    description: str = ""


@dataclass
class Response:
    status: str
    description: str = ""
    content: dict[str, Mapping[str, Any] | None] = field(default_factory=dict)


SecurityRequirement = dict[str, list[str]]


@dataclass
class Operation:
    path: str
    method: str
    operation_id: str = ""
    summary: str = ""
    description: str = ""
    tags: list[str] = field(default_factory=list)
    parameters: list[Parameter] = field(default_factory=list)
    request_body: RequestBody | None = None
    responses: dict[str, Response] = field(default_factory=dict)
    # None inherits the document default; [] explicitly disables auth
    security: list[SecurityRequirement] | None = None
    deprecated: bool = False

    @property
    def location(self) -> str:
        return f"paths.{self.path}.{self.method}"


@dataclass
class OAuthFlow:
    authorization_url: str = ""
    token_url: str = ""
    refresh_url: str = ""
    scopes: dict[str, str] = field(default_factory=dict)


@dataclass
class SecurityScheme:
    name: str
    type: str
    description: str = ""
    # apiKey
    param_name: str = ""
    location: str = ""
    # http
    scheme: str = ""
    bearer_format: str = ""
    # oauth2, keyed by OAS 3 flow name
    flows: dict[str, OAuthFlow] = field(default_factory=dict)
    # openIdConnect
    openid_connect_url: str = ""


@dataclass
class DocumentModel:
    """Uniform view of one OpenAPI document, whichever dialect it came from."""

    version: str
    title: str = ""
    api_version: str = ""
    description: str = ""
    schemas: dict[str, Mapping[str, Any]] = field(default_factory=dict)
    operations: list[Operation] = field(default_factory=list)
    security_schemes: dict[str, SecurityScheme] = field(default_factory=dict)
    security: list[SecurityRequirement] = field(default_factory=list)
    # the untouched source, used to follow non-schema JSON pointers
    raw: Mapping[str, Any] = field(default_factory=dict)
    # (location, message) for references the loader could not follow
    problems: list[tuple[str, str]] = field(default_factory=list)

    @property
    def is_oas2(self) -> bool:
        return self.version.startswith("2")

    def resolve_pointer(self, ref: str) -> Any:
        """Follow a local JSON pointer (#/a/b) through the raw document."""
        if not ref.startswith("#/"):
            return None
        node: Any = self.raw
        for part in ref[2:].split("/"):
            part = unescape_pointer(part)
            if isinstance(node, Mapping) and part in node:
                node = node[part]
            elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
                node = node[int(part)]
            else:
                return None
        return node
