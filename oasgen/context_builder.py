"""Build Jinja2 template contexts from the resolved plans.

Maps the neutral type graph to Go type expressions, struct tags and
validation tags, and assembles one context dict per artifact.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

from .naming import clean_description
from .operations import OperationBinding, ParameterBinding
from .type_graph import Constraints, FieldNode, TypeGraph, TypeKind, TypeNode

if TYPE_CHECKING:
    from .generator import GenerationContext
    from .security import OAuth2FlowPlan, SecurityBinding

# Names the templates declare at package level
EMITTER_NAMES: tuple[str, ...] = (
    "APIError", "Client", "ClientOption", "CredentialProvider",
    "DefaultOIDCDiscoveryURL", "DefaultUserAgent", "EnvCredentialProvider",
    "ErrNotImplemented", "GlobalSecurity", "MissingDiscriminatorError",
    "NewClient", "NewEnvCredentialProvider", "NewOIDCDiscoveryClient",
    "NewSecurityValidator", "NewStaticCredentialProvider", "OIDCConfiguration",
    "OIDCDiscoveryClient", "OperationSecurity", "RequestEditorFn",
    "SecurityRequirement", "SecurityValidator", "ServerInterface",
    "StaticCredentialProvider", "UnknownDiscriminatorError", "Unimplemented",
    "WithCredentialProvider", "WithHTTPClient", "WithRequestEditorFn",
    "WithUserAgent",
)

# Go packages the generated code may use, by the name it is referenced with
GO_PACKAGES: dict[str, str] = {
    "base64": "encoding/base64",
    "bytes": "bytes",
    "context": "context",
    "errors": "errors",
    "fmt": "fmt",
    "http": "net/http",
    "io": "io",
    "json": "encoding/json",
    "os": "os",
    "strings": "strings",
    "sync": "sync",
    "time": "time",
    "url": "net/url",
}

_RAW_STRING = re.compile(r"`[^`]*`")
_QUOTED_STRING = re.compile(r'"(?:[^"\\\n]|\\.)*"')
_LINE_COMMENT = re.compile(r"//[^\n]*")
_QUALIFIED = re.compile(r"(?<![\w.])(" + "|".join(GO_PACKAGES) + r")\.[A-Z]")


def detect_imports(source: str) -> list[str]:
    """Import paths for the packages a rendered body refers to."""
    code = _RAW_STRING.sub('""', source)
    code = _QUOTED_STRING.sub('""', code)
    code = _LINE_COMMENT.sub("", code)
    return sorted({GO_PACKAGES[m] for m in _QUALIFIED.findall(code)})


def go_string(value: Any) -> str:
    """Go interpreted string literal."""
    return json.dumps(str(value), ensure_ascii=False)


def go_scalar(base: str, fmt: str | None) -> str:
    """Map an OpenAPI base type and format onto a Go scalar type name."""
    if base == "string":
        if fmt == "date-time":
            return "time.Time"
        if fmt in ("byte", "binary"):
            return "[]byte"
        return "string"
    if base == "integer":
        return "int32" if fmt == "int32" else "int64"
    if base == "number":
        return "float32" if fmt == "float" else "float64"
    if base == "boolean":
        return "bool"
    return "any"


def go_type(graph: TypeGraph, type_id: int, pointer: bool = False) -> str:
    """Spell a type graph node as a Go type expression.

    Named nodes render by name; anonymous slices and maps recurse into their
    element types. ``pointer`` prefixes a star.
    """
    node = graph[type_id]
    if node.name is not None:
        name = node.name
    elif node.kind == TypeKind.SCALAR:
        name = go_scalar(node.base, node.format)
    elif node.kind == TypeKind.SLICE and node.target is not None:
        name = "[]" + go_type(graph, node.target)
    elif node.kind == TypeKind.MAP and node.target is not None:
        name = "map[string]" + go_type(graph, node.target)
    elif node.kind == TypeKind.ALIAS and node.target is not None:
        name = go_type(graph, node.target)
    else:
        name = "any"
    return "*" + name if pointer else name


def struct_tag(text: str) -> str:
    """Wrap a tag in backquotes, or an interpreted string when it holds one."""
    if "`" in text:
        return go_string(text)
    return f"`{text}`"


def _number(value: float) -> str:
    """5.0 -> "5", 0.5 -> "0.5"."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def validate_tag(
    graph: TypeGraph, type_id: int, required: bool, nullable: bool, c: Constraints,
) -> str:
    """go-playground/validator rules for one field."""
    node = graph.unalias(type_id)
    parts: list[str] = []
    if required and not nullable:
        parts.append("required")

    is_string = node.kind == TypeKind.ENUM or (
        node.kind == TypeKind.SCALAR and node.base == "string" and node.format not in ("byte", "binary", "date-time")
    )
    is_number = node.kind == TypeKind.SCALAR and node.base in ("integer", "number")

    if is_string:
        if c.min_length:
            parts.append(f"min={c.min_length}")
        if c.max_length is not None:
            parts.append(f"max={c.max_length}")
        if c.pattern:
            parts.append("regexp")
        if c.format == "email":
            parts.append("email")
        elif c.format in ("uri", "url"):
            parts.append("url")
    elif is_number:
        if c.minimum is not None:
            parts.append(f"{'gt' if c.exclusive_minimum else 'gte'}={_number(c.minimum)}")
        if c.maximum is not None:
            parts.append(f"{'lt' if c.exclusive_maximum else 'lte'}={_number(c.maximum)}")
    elif node.kind == TypeKind.SLICE:
        if c.min_items:
            parts.append(f"min={c.min_items}")
        if c.max_items is not None:
            parts.append(f"max={c.max_items}")

    if (is_string or is_number) and c.one_of:
        values = [str(v) for v in c.one_of]
        if all(v and not re.search(r"[\s,|\"`]", v) for v in values):
            parts.append("oneof=" + " ".join(values))
    return ",".join(parts)


def _comment(text: str, prefix: str = "") -> list[str]:
    cleaned = clean_description(text)
    if not cleaned:
        return []
    return [f"{prefix} {cleaned}".strip()]


# ---------------------------------------------------------------------------
# Type declarations
# ---------------------------------------------------------------------------

def _field(graph: TypeGraph, f: FieldNode, include_validation: bool) -> dict[str, Any]:
    tag = "json:" + go_string(f.original_name if f.required else f"{f.original_name},omitempty")
    if include_validation:
        rules = validate_tag(graph, f.type_id, f.required, f.nullable, f.constraints)
        if rules:
            tag += " validate:" + go_string(rules)
    comment = _comment(f.description)
    if f.deprecated:
        comment.append("Deprecated: this property is deprecated.")
    return {
        "name": f.identifier,
        "type": go_type(graph, f.type_id, f.pointer),
        "tag": struct_tag(tag),
        "comment": comment,
    }


def has_json_methods(graph: TypeGraph, type_id: int, seen: frozenset[int] = frozenset()) -> bool:
    """Whether the emitted struct defines, or has promoted, custom JSON methods.

    A catch-all field gets its own MarshalJSON/UnmarshalJSON. Go promotes
    methods of embedded members, so a struct embedding such a member has
    them too unless it declares its own.
    """
    node = graph.unalias(type_id)
    if node.kind != TypeKind.STRUCT or node.id in seen:
        return False
    if node.catch_all is not None:
        return True
    return any(has_json_methods(graph, m.type_id, seen | {node.id}) for m in node.embedded)


def _embeds(graph: TypeGraph, start: int, target: int) -> bool:
    """Whether ``start`` reaches ``target`` through embedded members."""
    pending = [start]
    seen: set[int] = set()
    while pending:
        node = graph.unalias(pending.pop())
        if node.id == target:
            return True
        if node.id in seen:
            continue
        seen.add(node.id)
        pending.extend(m.type_id for m in node.embedded)
    return False


def _json_members(graph: TypeGraph, node: TypeNode) -> list[dict[str, Any]]:
    members = []
    for m in node.embedded:
        member = graph.unalias(m.type_id)
        name = go_type(graph, m.type_id)
        members.append({
            "field": name,
            "type": name,
            "pointer": m.indirect,
            # a pointer member that embeds this struct again is left nil
            "decode": not (m.indirect and _embeds(graph, m.type_id, node.id)),
            "catch_all": member.catch_all.identifier if member.catch_all is not None else None,
        })
    return members


def type_declaration(graph: TypeGraph, node: TypeNode, include_validation: bool) -> dict[str, Any]:
    decl: dict[str, Any] = {
        "kind": node.kind.value,
        "name": node.name,
        "comment": _comment(node.description, node.name or ""),
    }
    if node.kind == TypeKind.STRUCT:
        decl["embedded"] = [
            ("*" if m.indirect else "") + go_type(graph, m.type_id) for m in node.embedded
        ]
        decl["fields"] = [_field(graph, f, include_validation) for f in node.fields]
        decl["catch_all"] = None
        if node.catch_all is not None:
            map_node = graph[node.catch_all.type_id]
            decl["catch_all"] = {
                "name": node.catch_all.identifier,
                "type": go_type(graph, node.catch_all.type_id),
                "value_type": go_type(graph, map_node.target) if map_node.target is not None else "any",
                "known_keys": [go_string(f.original_name) for f in graph.flattened_fields(node.id)],
            }
        # Embedded members with JSON methods would shadow this struct's own
        # decoding, so each part is decoded on its own.
        decl["split_json"] = None
        if node.embedded and has_json_methods(graph, node.id):
            keys = [go_string(f.original_name) for f in graph.flattened_fields(node.id)]
            decl["split_json"] = {
                "members": _json_members(graph, node),
                "known_keys": "[]string{" + ", ".join(keys) + "}" if keys else None,
            }
    elif node.kind == TypeKind.ENUM:
        decl["base"] = "string"
        decl["constants"] = [
            {"name": c.identifier, "value": go_string(c.value)} for c in node.constants
        ]
    elif node.kind == TypeKind.UNION:
        if not decl["comment"]:
            decl["comment"] = [f"{node.name} represents a union type."]
        decl["variants"] = [
            {
                "name": v.identifier,
                "type": "*" + go_type(graph, v.type_id),
                "elem": go_type(graph, v.type_id),
                "mapped": [go_string(value) for value in v.values],
            }
            for v in node.variants
        ]
        decl["no_match"] = go_string(f"{node.name}: data matches no variant")
        decl["discriminator"] = None
        if node.decode_table is not None:
            decl["discriminator"] = {
                "property": go_string(node.decode_table.property_name),
                "label": node.decode_table.property_name,
                "type_name": go_string(node.name),
            }
    elif node.kind in (TypeKind.SLICE, TypeKind.MAP):
        element = go_type(graph, node.target) if node.target is not None else "any"
        decl["target"] = ("[]" if node.kind == TypeKind.SLICE else "map[string]") + element
        decl["defined"] = True
    else:
        target = go_type(graph, node.target) if node.target is not None else "any"
        decl["kind"] = "alias"
        decl["target"] = target
        decl["defined"] = False
        if not decl["comment"]:
            decl["comment"] = [f"{node.name} is an alias for {target}."]
        if node.enum_values:
            decl["comment"].append(
                "Allowed values: " + ", ".join(json.dumps(v, ensure_ascii=False) for v in node.enum_values)
            )
    if node.deprecated:
        if decl["comment"]:
            decl["comment"].append("")
        decl["comment"].append("Deprecated: this schema is deprecated.")
    return decl


def _param_field(graph: TypeGraph, p: ParameterBinding, include_validation: bool) -> dict[str, Any]:
    tag = f"{p.location}:" + go_string(p.name)
    if include_validation:
        rules = validate_tag(graph, p.type_id, p.required, False, p.constraints)
        if rules:
            tag += " validate:" + go_string(rules)
    comment = _comment(p.description)
    if p.deprecated:
        comment.append("Deprecated: this parameter is deprecated.")
    return {
        "name": p.identifier,
        "type": go_type(graph, p.type_id, p.pointer),
        "tag": struct_tag(tag),
        "comment": comment,
    }


def params_declaration(graph: TypeGraph, op: OperationBinding, include_validation: bool) -> dict[str, Any]:
    return {
        "kind": "struct",
        "name": op.params_type,
        "comment": [f"{op.params_type} holds the query, header and cookie parameters of {op.method_name}."],
        "embedded": [],
        "fields": [_param_field(graph, p, include_validation) for p in op.params],
        "catch_all": None,
        "split_json": None,
    }


def build_types_context(
    ctx: GenerationContext,
    type_names: set[str],
    operations: list[OperationBinding],
    include_union_errors: bool,
) -> dict[str, Any]:
    graph = ctx.graph
    validation = ctx.config.include_validation
    decls = [
        type_declaration(graph, node, validation)
        for node in graph.named()
        if node.name in type_names
    ]
    if ctx.config.generate_client or ctx.config.generate_server:
        decls.extend(params_declaration(graph, op, validation) for op in operations if op.params_type)
    return {
        "declarations": decls,
        "union_errors": include_union_errors,
    }


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

def path_expression(op: OperationBinding) -> str:
    """Go expression building the request path."""
    idents = {p.name: p.identifier for p in op.path_params}
    pieces = []
    for piece in re.split(r"(\{[^{}/]+\})", op.path):
        if not piece:
            continue
        name = piece[1:-1] if piece.startswith("{") and piece.endswith("}") else None
        if name is not None and name in idents:
            pieces.append(f"url.PathEscape(formatParam({idents[name]}))")
        else:
            pieces.append(go_string(piece))
    return " + ".join(pieces) or '""'


def _param_access(graph: TypeGraph, p: ParameterBinding) -> dict[str, Any]:
    field = f"params.{p.identifier}"
    node = graph.unalias(p.type_id)
    access: dict[str, Any] = {
        "name": go_string(p.name),
        "slice": node.kind == TypeKind.SLICE,
        "field": field,
        "guard": None,
        "value": field,
    }
    if p.pointer:
        access["guard"] = f"{field} != nil"
        access["value"] = f"*{field}"
    elif not p.required and graph.is_nilable(p.type_id) and not access["slice"]:
        access["guard"] = f"{field} != nil"
    return access


def _result(graph: TypeGraph, op: OperationBinding) -> dict[str, Any] | None:
    if op.result is None or op.result.type_id is None:
        return None
    return {
        "type": go_type(graph, op.result.type_id),
        "pointer": op.result.pointer,
        "status": op.result.status,
    }


def _returns(result: dict[str, Any] | None) -> str:
    if result is None:
        return "(*http.Response, error)"
    return f"({'*' if result['pointer'] else ''}{result['type']}, error)"


def _operation_comment(op: OperationBinding) -> list[str]:
    lines = _comment(op.operation.summary or op.operation.description, op.method_name)
    if not lines:
        lines = [f"{op.method_name} calls {op.http_method} {op.path}."]
    else:
        lines.append("")
        lines.append(f"{op.http_method} {op.path}")
    if op.deprecated:
        lines.append("")
        lines.append("Deprecated: this operation is deprecated.")
    return lines


def _arguments(graph: TypeGraph, op: OperationBinding) -> str:
    args = ["ctx context.Context"]
    args.extend(f"{p.identifier} {go_type(graph, p.type_id)}" for p in op.path_params)
    if op.params_type:
        args.append(f"params *{op.params_type}")
    if op.body is not None:
        if op.body.type_id is not None:
            args.append(f"body {go_type(graph, op.body.type_id, op.body.pointer)}")
        else:
            args.append("body io.Reader")
    args.append("reqEditors ...RequestEditorFn")
    return ", ".join(args)


def operation_context(graph: TypeGraph, op: OperationBinding) -> dict[str, Any]:
    params = [_param_access(graph, p) for p in op.params]
    body = None
    if op.body is not None:
        body = {
            "kind": "json" if op.body.type_id is not None else "raw",
            "required": op.body.required,
            "content_type": go_string(op.body.content_type),
        }
    result = _result(graph, op)
    return {
        "name": op.method_name,
        "comment": _operation_comment(op),
        "http_method": go_string(op.http_method),
        "arguments": _arguments(graph, op),
        "returns": _returns(result),
        "path": path_expression(op),
        "query_params": [a for a, p in zip(params, op.params) if p.location == "query"],
        "header_params": [a for a, p in zip(params, op.params) if p.location == "header"],
        "cookie_params": [a for a, p in zip(params, op.params) if p.location == "cookie"],
        "body": body,
        "result": result,
    }


def build_client_context(
    ctx: GenerationContext,
    operations: list[OperationBinding],
    include_base: bool,
) -> dict[str, Any]:
    return {
        "include_base": include_base,
        "title": ctx.document.title or "API",
        "user_agent": go_string(ctx.client_user_agent),
        "operations": [operation_context(ctx.graph, op) for op in operations],
    }


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

def _request_declaration(ctx: GenerationContext, op: OperationBinding) -> dict[str, Any]:
    graph = ctx.graph
    scope = ctx.allocator.new_scope(f"{op.request_type} fields")
    fields = []
    for p in op.path_params:
        fields.append({
            "name": scope.allocate(p.name, op.location),
            "type": go_type(graph, p.type_id),
            "tag": struct_tag("path:" + go_string(p.name)),
            "comment": _comment(p.description),
        })
    if op.params_type:
        fields.append({
            "name": scope.allocate("Params", op.location),
            "type": op.params_type,
            "tag": "",
            "comment": [],
        })
    if op.body is not None:
        body_type = "[]byte"
        if op.body.type_id is not None:
            body_type = go_type(graph, op.body.type_id, op.body.pointer)
        fields.append({
            "name": scope.allocate("Body", op.location),
            "type": body_type,
            "tag": "",
            "comment": [f"Content type: {op.body.content_type}"],
        })
    return {
        "kind": "struct",
        "name": op.request_type,
        "comment": [f"{op.request_type} holds the decoded inputs of {op.method_name}."],
        "embedded": [],
        "fields": fields,
        "catch_all": None,
        "split_json": None,
    }


def _responses_doc(graph: TypeGraph, op: OperationBinding) -> list[str]:
    lines = []
    for r in op.responses:
        text = r.status
        if r.type_id is not None:
            text += f" ({go_type(graph, r.type_id)})"
        elif r.content_type:
            text += f" ({r.content_type})"
        description = clean_description(r.description)
        lines.append(f"  - {text}: {description}" if description else f"  - {text}")
    return lines


def build_server_context(
    ctx: GenerationContext,
    operations: list[OperationBinding],
    include_base: bool,
) -> dict[str, Any]:
    """Request types of ``operations``; the base unit also declares the interface."""
    graph = ctx.graph
    methods = []
    for op in ctx.operations if include_base else []:
        result = _result(graph, op)
        methods.append({
            "name": op.method_name,
            "comment": _operation_comment(op),
            "request_type": op.request_type,
            # empty when the handler writes no typed body
            "result": (("*" if result["pointer"] else "") + result["type"]) if result else "",
            "responses": _responses_doc(graph, op),
        })
    return {
        "include_base": include_base,
        "requests": [_request_declaration(ctx, op) for op in operations],
        "methods": methods,
    }


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------

def credential_mode(binding: SecurityBinding) -> str:
    """How a credential is attached: basic, query, cookie, header or authorization."""
    if binding.is_basic:
        return "basic"
    if binding.site in ("query", "cookie"):
        return binding.site
    if binding.kind == "apiKey":
        return "header"
    return "authorization"


def _credential(binding: SecurityBinding) -> dict[str, Any]:
    prefix = binding.authorization_prefix
    return {
        "scheme": binding.scheme_name,
        "scheme_literal": go_string(binding.scheme_name),
        "helper": binding.helper,
        "mode": credential_mode(binding),
        "param_name": go_string(binding.param_name),
        "prefix": go_string(f"{prefix} ") if prefix else '""',
    }


def build_security_context(ctx: GenerationContext) -> dict[str, Any]:
    helpers = []
    for b in ctx.security:
        helper = _credential(b)
        helper["documentation"] = [
            line if line.startswith("  - ") else clean_description(line)
            for line in b.documentation
        ]
        helpers.append(helper)
    return {"helpers": helpers}


def build_credentials_context(ctx: GenerationContext) -> dict[str, Any]:
    return {"schemes": [_credential(b) for b in ctx.security]}


def build_oauth2_context(plan: OAuth2FlowPlan) -> dict[str, Any]:
    return {
        "scheme": plan.scheme_name,
        "config_type": plan.config_type,
        "constructor": plan.constructor,
        "token_type": plan.token_type,
        "auth_url": go_string(plan.authorization_url),
        "token_url": go_string(plan.token_url),
        "refresh_url": go_string(plan.refresh_url),
        "scopes": [
            {"label": s, "description": clean_description(d)} for s, d in plan.scopes.items()
        ],
        "authorize": plan.has("authorizationCode") or plan.has("implicit"),
        "response_type": go_string("code" if plan.has("authorizationCode") else "token"),
        "authorization_code": plan.has("authorizationCode"),
        "client_credentials": plan.has("clientCredentials"),
        "password": plan.has("password"),
        "token_flow": bool(plan.token_url),
    }


def alternatives_literal(reqs: list[dict[str, list[str]]], indent: str) -> str:
    """Go [][]SecurityRequirement composite literal."""
    if not reqs:
        return "[][]SecurityRequirement{}"
    lines = ["[][]SecurityRequirement{"]
    for req in reqs:
        members = []
        for name in sorted(req):
            scopes = "nil"
            if req[name]:
                scopes = "[]string{" + ", ".join(go_string(s) for s in req[name]) + "}"
            members.append(f"{{Scheme: {go_string(name)}, Scopes: {scopes}}}")
        lines.append(f"{indent}\t{{{', '.join(members)}}},")
    lines.append(f"{indent}}}")
    return "\n".join(lines)


def build_enforce_context(
    ctx: GenerationContext,
    method_names: list[str] | None,
    include_base: bool,
) -> dict[str, Any]:
    plan = ctx.enforcement
    assert plan is not None
    operations = plan.operations if method_names is None else plan.for_methods(method_names)
    return {
        "include_base": include_base,
        "global_security": alternatives_literal(plan.global_security, ""),
        "operations": [
            {"name": go_string(name), "alternatives": alternatives_literal(operations[name], "\t")}
            for name in sorted(operations)
        ],
    }


def build_oidc_context(ctx: GenerationContext) -> dict[str, Any]:
    plan = ctx.oidc
    return {
        "url": go_string(plan.url if plan is not None else ""),
        "scheme": plan.scheme_name if plan is not None else "",
    }


def build_header_context(ctx: GenerationContext, imports: list[str]) -> dict[str, Any]:
    source = ctx.document.title
    if source and ctx.document.api_version:
        source = f"{source} {ctx.document.api_version}"
    return {
        "package": ctx.config.package_name,
        "version": ctx.version,
        "source": clean_description(source),
        "imports": imports,
    }
