"""Load an OpenAPI document and normalize it into a DocumentModel.

Reads a local JSON/YAML file or fetches an http(s) URL, then unifies the
OAS 2.0 and OAS 3.x layouts: definitions/components.schemas,
securityDefinitions/components.securitySchemes, body and formData
parameters, consumes/produces, and $ref'd parameters, bodies and responses.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Mapping

import httpx
import yaml

from .document import (
    HTTP_METHODS,
    DocumentModel,
    OAuthFlow,
    Operation,
    Parameter,
    RequestBody,
    Response,
    SecurityScheme,
)
from .errors import DocumentError

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 30.0

# OAS 2.0 oauth2 flow names -> OAS 3 flow names
_OAS2_FLOWS: dict[str, str] = {
    "implicit": "implicit",
    "password": "password",
    "application": "clientCredentials",
    "accessCode": "authorizationCode",
}

_OAS3_FLOWS: tuple[str, ...] = ("implicit", "password", "clientCredentials", "authorizationCode")

# Parameter keys that describe the value in OAS 2.0 non-body parameters
_OAS2_SCHEMA_KEYS: tuple[str, ...] = (
    "type", "format", "items", "enum", "default", "minimum", "maximum",
    "exclusiveMinimum", "exclusiveMaximum", "minLength", "maxLength",
    "pattern", "minItems", "maxItems", "uniqueItems", "multipleOf",
    "x-nullable",
)


class _OpenAPILoader(yaml.SafeLoader):
    """SafeLoader resolving booleans the YAML 1.2 way.

    PyYAML follows YAML 1.1, where yes/no/on/off are booleans. OpenAPI
    documents use YAML 1.2, so property names such as ``on`` stay strings.
    """


_OpenAPILoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag != "tag:yaml.org,2002:bool"]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
_OpenAPILoader.add_implicit_resolver(
    "tag:yaml.org,2002:bool",
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)


def load_document(source: str | Path, user_agent: str = "") -> DocumentModel:
    """Load a document from a file path or an http(s) URL."""
    text = _read_source(source, user_agent)
    try:
        raw = yaml.load(text, Loader=_OpenAPILoader)
    except yaml.YAMLError as e:
        raise DocumentError(f"cannot parse {source}: {e}") from e
    if not isinstance(raw, dict):
        raise DocumentError(f"{source} does not contain an OpenAPI object")
    return build_document(raw)


def _read_source(source: str | Path, user_agent: str) -> str:
    location = str(source)
    if location.startswith(("http://", "https://")):
        headers = {"User-Agent": user_agent} if user_agent else {}
        logger.debug("fetching %s", location)
        try:
            resp = httpx.get(location, headers=headers, timeout=FETCH_TIMEOUT, follow_redirects=True)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise DocumentError(f"cannot fetch {location}: {e}") from e
        return resp.text
    try:
        with open(location, encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        raise DocumentError(f"cannot read {location}: {e}") from e


def build_document(raw: Mapping[str, Any]) -> DocumentModel:
    """Normalize a parsed OpenAPI object of either dialect."""
    if "swagger" in raw:
        version = str(raw["swagger"])
        if not version.startswith("2"):
            raise DocumentError(f"unsupported swagger version {version!r}")
        return _build_oas2(raw, version)
    if "openapi" in raw:
        version = str(raw["openapi"])
        if not version.startswith("3"):
            raise DocumentError(f"unsupported openapi version {version!r}")
        return _build_oas3(raw, version)
    raise DocumentError("document declares neither 'openapi' nor 'swagger'")


def _base_document(raw: Mapping[str, Any], version: str) -> DocumentModel:
    info = raw.get("info") or {}
    return DocumentModel(
        version=version,
        title=str(info.get("title") or ""),
        api_version=str(info.get("version") or ""),
        description=str(info.get("description") or ""),
        security=_security_list(raw.get("security")) or [],
        raw=raw,
    )


def _security_list(value: Any) -> list[dict[str, list[str]]] | None:
    if not isinstance(value, list):
        return None
    result = []
    for req in value:
        if isinstance(req, Mapping):
            result.append({str(k): [str(s) for s in (v or [])] for k, v in req.items()})
    return result


def _deref(doc: DocumentModel, node: Any, location: str) -> Any:
    """Follow a chain of non-schema $refs (#/parameters/x, #/components/responses/y).

    A dangling or circular chain is recorded in ``doc.problems`` and yields None.
    """
    seen: set[str] = set()
    while isinstance(node, Mapping) and isinstance(node.get("$ref"), str):
        ref = node["$ref"]
        if ref in seen:
            doc.problems.append((location, f"circular reference {ref}; skipped"))
            return None
        seen.add(ref)
        target = doc.resolve_pointer(ref)
        if target is None:
            doc.problems.append((location, f"dangling reference {ref}; skipped"))
            return None
        node = target
    return node


def _path_items(doc: DocumentModel):
    for path, item in sorted((doc.raw.get("paths") or {}).items()):
        item = _deref(doc, item, f"paths.{path}")
        if isinstance(item, Mapping):
            yield str(path), item


def _merge_parameters(
    doc: DocumentModel, path: str, method: str, item: Mapping[str, Any], op: Mapping[str, Any],
) -> list[Mapping[str, Any]]:
    """Merge path-item and operation parameters; the operation wins on (name, in)."""
    merged: dict[tuple[str, str], Mapping[str, Any]] = {}
    levels = ((f"paths.{path}", item.get("parameters")), (f"paths.{path}.{method}", op.get("parameters")))
    for location, params in levels:
        for i, param in enumerate(params or []):
            param = _deref(doc, param, f"{location}.parameters[{i}]")
            if not isinstance(param, Mapping) or "name" not in param:
                continue
            merged[(str(param["name"]), str(param.get("in", "query")))] = param
    return list(merged.values())


# ---------------------------------------------------------------------------
# OAS 3.x
# ---------------------------------------------------------------------------

def _build_oas3(raw: Mapping[str, Any], version: str) -> DocumentModel:
    doc = _base_document(raw, version)
    components = raw.get("components") or {}
    doc.schemas = dict(components.get("schemas") or {})

    for name, scheme in sorted((components.get("securitySchemes") or {}).items()):
        scheme = _deref(doc, scheme, f"components.securitySchemes.{name}")
        if isinstance(scheme, Mapping):
            doc.security_schemes[name] = _oas3_security_scheme(name, scheme)

    for path, item in _path_items(doc):
        for method in HTTP_METHODS:
            op = item.get(method)
            if not isinstance(op, Mapping):
                continue
            location = f"paths.{path}.{method}"
            params = _merge_parameters(doc, path, method, item, op)
            doc.operations.append(Operation(
                path=path,
                method=method,
                operation_id=str(op.get("operationId") or ""),
                summary=str(op.get("summary") or ""),
                description=str(op.get("description") or ""),
                tags=[str(t) for t in op.get("tags") or []],
                parameters=[_oas3_parameter(p) for p in params],
                request_body=_oas3_request_body(doc, op.get("requestBody"), f"{location}.requestBody"),
                responses=_oas3_responses(doc, op.get("responses"), f"{location}.responses"),
                security=_security_list(op.get("security")),
                deprecated=bool(op.get("deprecated")),
            ))

    logger.debug(
        "loaded OAS %s document: %d schemas, %d operations",
        version, len(doc.schemas), len(doc.operations),
    )
    return doc


def _oas3_parameter(param: Mapping[str, Any]) -> Parameter:
    schema = param.get("schema")
    if not isinstance(schema, Mapping):
        # content-style parameters carry exactly one media type
        for media in (param.get("content") or {}).values():
            if isinstance(media, Mapping) and isinstance(media.get("schema"), Mapping):
                schema = media["schema"]
                break
    return Parameter(
        name=str(param["name"]),
        location=str(param.get("in", "query")),
        required=bool(param.get("required")) or param.get("in") == "path",
        schema=schema if isinstance(schema, Mapping) else {},
        description=str(param.get("description") or ""),
        deprecated=bool(param.get("deprecated")),
    )


def _oas3_content(content: Any) -> dict[str, Mapping[str, Any] | None]:
    result: dict[str, Mapping[str, Any] | None] = {}
    for content_type, media in sorted((content or {}).items()):
        schema = media.get("schema") if isinstance(media, Mapping) else None
        result[str(content_type)] = schema if isinstance(schema, Mapping) else None
    return result


def _oas3_request_body(doc: DocumentModel, body: Any, location: str) -> RequestBody | None:
    body = _deref(doc, body, location)
    if not isinstance(body, Mapping):
        return None
    return RequestBody(
        content=_oas3_content(body.get("content")),
        required=bool(body.get("required")),
        description=str(body.get("description") or ""),
    )


def _oas3_responses(doc: DocumentModel, responses: Any, location: str) -> dict[str, Response]:
    result: dict[str, Response] = {}
    for status, resp in (responses or {}).items():
        resp = _deref(doc, resp, f"{location}.{status}")
        if not isinstance(resp, Mapping):
            continue
        result[str(status)] = Response(
            status=str(status),
            description=str(resp.get("description") or ""),
            content=_oas3_content(resp.get("content")),
        )
    return result


def _oas3_security_scheme(name: str, scheme: Mapping[str, Any]) -> SecurityScheme:
    flows: dict[str, OAuthFlow] = {}
    for flow_name in _OAS3_FLOWS:
        flow = (scheme.get("flows") or {}).get(flow_name)
        if isinstance(flow, Mapping):
            flows[flow_name] = _oauth_flow(flow)
    return SecurityScheme(
        name=name,
        type=str(scheme.get("type") or ""),
        description=str(scheme.get("description") or ""),
        param_name=str(scheme.get("name") or ""),
        location=str(scheme.get("in") or ""),
        scheme=str(scheme.get("scheme") or "").lower(),
        bearer_format=str(scheme.get("bearerFormat") or ""),
        flows=flows,
        openid_connect_url=str(scheme.get("openIdConnectUrl") or ""),
    )


def _oauth_flow(flow: Mapping[str, Any]) -> OAuthFlow:
    return OAuthFlow(
        authorization_url=str(flow.get("authorizationUrl") or ""),
        token_url=str(flow.get("tokenUrl") or ""),
        refresh_url=str(flow.get("refreshUrl") or ""),
        scopes={str(k): str(v or "") for k, v in (flow.get("scopes") or {}).items()},
    )


# ---------------------------------------------------------------------------
# OAS 2.0
# ---------------------------------------------------------------------------

def _build_oas2(raw: Mapping[str, Any], version: str) -> DocumentModel:
    doc = _base_document(raw, version)
    doc.schemas = dict(raw.get("definitions") or {})
    global_consumes = list(raw.get("consumes") or [])
    global_produces = list(raw.get("produces") or [])

    for name, scheme in sorted((raw.get("securityDefinitions") or {}).items()):
        if isinstance(scheme, Mapping):
            doc.security_schemes[name] = _oas2_security_scheme(name, scheme)

    for path, item in _path_items(doc):
        for method in HTTP_METHODS:
            op = item.get(method)
            if not isinstance(op, Mapping) or method == "trace":
                continue
            consumes = list(op.get("consumes") or global_consumes) or ["application/json"]
            produces = list(op.get("produces") or global_produces) or ["application/json"]
            params = _merge_parameters(doc, path, method, item, op)

            doc.operations.append(Operation(
                path=path,
                method=method,
                operation_id=str(op.get("operationId") or ""),
                summary=str(op.get("summary") or ""),
                description=str(op.get("description") or ""),
                tags=[str(t) for t in op.get("tags") or []],
                parameters=[
                    _oas2_parameter(p) for p in params
                    if p.get("in") not in ("body", "formData")
                ],
                request_body=_oas2_request_body(params, consumes),
                responses=_oas2_responses(
                    doc, op.get("responses"), produces, f"paths.{path}.{method}.responses",
                ),
                security=_security_list(op.get("security")),
                deprecated=bool(op.get("deprecated")),
            ))

    logger.debug(
        "loaded Swagger %s document: %d definitions, %d operations",
        version, len(doc.schemas), len(doc.operations),
    )
    return doc


def _oas2_value_schema(param: Mapping[str, Any]) -> dict[str, Any]:
    schema = {k: param[k] for k in _OAS2_SCHEMA_KEYS if k in param}
    if schema.get("type") == "file":
        schema["type"] = "string"
        schema["format"] = "binary"
    return schema


def _oas2_parameter(param: Mapping[str, Any]) -> Parameter:
    return Parameter(
        name=str(param["name"]),
        location=str(param.get("in", "query")),
        required=bool(param.get("required")) or param.get("in") == "path",
        schema=_oas2_value_schema(param),
        description=str(param.get("description") or ""),
    )


def _oas2_request_body(params: list[Mapping[str, Any]], consumes: list[str]) -> RequestBody | None:
    for param in params:
        if param.get("in") == "body":
            schema = param.get("schema")
            return RequestBody(
                content={ct: schema if isinstance(schema, Mapping) else None for ct in sorted(consumes)},
                required=bool(param.get("required")),
                description=str(param.get("description") or ""),
            )

    form = [p for p in params if p.get("in") == "formData"]
    if not form:
        return None
    properties = {str(p["name"]): _oas2_value_schema(p) for p in form}
    required = sorted(str(p["name"]) for p in form if p.get("required"))
    has_file = any(p.get("type") == "file" for p in form)
    if has_file or "multipart/form-data" in consumes:
        content_type = "multipart/form-data"
    else:
        content_type = "application/x-www-form-urlencoded"
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return RequestBody(content={content_type: schema}, required=bool(required))


def _oas2_responses(
    doc: DocumentModel, responses: Any, produces: list[str], location: str,
) -> dict[str, Response]:
    result: dict[str, Response] = {}
    for status, resp in (responses or {}).items():
        resp = _deref(doc, resp, f"{location}.{status}")
        if not isinstance(resp, Mapping):
            continue
        schema = resp.get("schema")
        content: dict[str, Mapping[str, Any] | None] = {}
        if isinstance(schema, Mapping):
            content = {ct: schema for ct in sorted(produces)}
        result[str(status)] = Response(
            status=str(status),
            description=str(resp.get("description") or ""),
            content=content,
        )
    return result


def _oas2_security_scheme(name: str, scheme: Mapping[str, Any]) -> SecurityScheme:
    scheme_type = str(scheme.get("type") or "")
    flows: dict[str, OAuthFlow] = {}
    if scheme_type == "oauth2":
        flow_name = _OAS2_FLOWS.get(str(scheme.get("flow") or ""))
        if flow_name:
            flows[flow_name] = _oauth_flow(scheme)
    if scheme_type == "basic":
        return SecurityScheme(
            name=name, type="http", scheme="basic",
            description=str(scheme.get("description") or ""),
        )
    return SecurityScheme(
        name=name,
        type=scheme_type,
        description=str(scheme.get("description") or ""),
        param_name=str(scheme.get("name") or ""),
        location=str(scheme.get("in") or ""),
        flows=flows,
    )


def load_json(text: str) -> DocumentModel:
    """Build a document from JSON text."""
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise DocumentError(f"invalid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise DocumentError("JSON text does not contain an OpenAPI object")
    return build_document(raw)
