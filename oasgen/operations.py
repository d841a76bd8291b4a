"""Bind document operations into client/server call plans.

For each operation:
  - method name from operationId, else verb + path (By<Param> placeholders)
  - path parameters become positional arguments in placeholder order
  - query/header/cookie parameters become one <Method>Params struct
  - a JSON request body becomes a typed argument, anything else raw bytes
  - one success response is selected for the client return type

Examples:
  GET /pets/{petId}?limit -> GetPetsByPetId(ctx, petId, params *GetPetsByPetIdParams)
  POST /pets (json Pet)   -> CreatePet(ctx, body Pet)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .document import HTTP_METHODS, DocumentModel, Operation, SecurityRequirement
from .errors import IssueList
from .naming import IdentifierAllocator, NameScope, method_name, to_param_name, to_type_name
from .schema_parser import TypeResolver
from .type_graph import Constraints

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{([^{}/]+)\}")

# Names a generated method body already uses: its own arguments and locals,
# the receiver, and the packages it refers to
_RESERVED_ARGUMENTS: tuple[str, ...] = (
    "ctx", "params", "body", "contentType", "reqEditors",
    "c", "path", "query", "req", "resp", "err", "out", "reqBody", "encoded", "v",
    "base64", "bytes", "context", "errors", "fmt", "http", "io", "json",
    "os", "strings", "sync", "time", "url",
)

_PARAMS_LOCATIONS: tuple[str, ...] = ("query", "header", "cookie")


@dataclass
class ParameterBinding:
    name: str  # wire name
    location: str
    identifier: str
    required: bool
    type_id: int
    pointer: bool = False
    description: str = ""
    deprecated: bool = False
    constraints: Constraints = field(default_factory=Constraints)


@dataclass
class BodyBinding:
    content_type: str
    # None means the body is sent as raw bytes
    type_id: int | None
    required: bool = False
    pointer: bool = False
    description: str = ""

    @property
    def is_json(self) -> bool:
        return self.type_id is not None


@dataclass
class ResponseBinding:
    status: str
    description: str = ""
    content_type: str | None = None
    type_id: int | None = None
    pointer: bool = False

    @property
    def is_success(self) -> bool:
        return self.status.startswith("2")


@dataclass
class OperationBinding:
    operation: Operation
    method_name: str
    path_params: list[ParameterBinding] = field(default_factory=list)
    params_type: str | None = None
    params: list[ParameterBinding] = field(default_factory=list)
    body: BodyBinding | None = None
    # None when no JSON response is declared; the client returns the raw response
    result: ResponseBinding | None = None
    responses: list[ResponseBinding] = field(default_factory=list)
    request_type: str | None = None
    security: list[SecurityRequirement] = field(default_factory=list)

    @property
    def path(self) -> str:
        return self.operation.path

    @property
    def http_method(self) -> str:
        return self.operation.method.upper()

    @property
    def location(self) -> str:
        return self.operation.location

    @property
    def deprecated(self) -> bool:
        return self.operation.deprecated

    def type_ids(self) -> list[int]:
        """Every type the operation's signature or responses mention."""
        ids = [p.type_id for p in self.path_params + self.params]
        if self.body is not None and self.body.type_id is not None:
            ids.append(self.body.type_id)
        ids.extend(r.type_id for r in self.responses if r.type_id is not None)
        return ids


def operation_sort_key(op: Operation) -> tuple[str, int]:
    method = op.method.lower()
    order = HTTP_METHODS.index(method) if method in HTTP_METHODS else len(HTTP_METHODS)
    return (op.path, order)


def path_placeholders(path: str) -> list[str]:
    """Placeholder names in path order, without duplicates."""
    seen: list[str] = []
    for name in _PLACEHOLDER.findall(path):
        if name not in seen:
            seen.append(name)
    return seen


def _status_key(status: str) -> tuple[int, str]:
    if status.isdigit():
        return (0, status.zfill(3))
    if status.lower() == "default":
        return (2, status)
    return (1, status.upper())


def _pick_content_type(content: dict[str, Any]) -> str | None:
    types = sorted(content)
    for content_type in types:
        if "json" in content_type.lower():
            return content_type
    return types[0] if types else None


class OperationBinder:
    """Produce an OperationBinding for every operation in the document."""

    def __init__(
        self,
        document: DocumentModel,
        resolver: TypeResolver,
        allocator: IdentifierAllocator,
        issues: IssueList,
        generate_server: bool = False,
    ) -> None:
        self.document = document
        self.resolver = resolver
        self.graph = resolver.graph
        self.allocator = allocator
        self.issues = issues
        self.generate_server = generate_server

    @property
    def methods(self) -> NameScope:
        return self.allocator.scope("client methods")

    def bind_all(self) -> list[OperationBinding]:
        operations = sorted(self.document.operations, key=operation_sort_key)
        names = [
            self.methods.allocate(method_name(op.operation_id, op.method, op.path), op.location)
            for op in operations
        ]
        bindings = [self.bind(op, name) for op, name in zip(operations, names)]
        logger.debug("bound %d operations", len(bindings))
        return bindings

    def bind(self, op: Operation, name: str) -> OperationBinding:
        binding = OperationBinding(
            operation=op,
            method_name=name,
            security=list(op.security if op.security is not None else self.document.security),
        )
        arguments = self.allocator.new_scope(f"{name} arguments", normalize=to_param_name)
        for reserved in _RESERVED_ARGUMENTS:
            arguments.reserve(reserved)

        self._bind_path_params(binding, arguments)
        self._bind_params(binding)
        self._bind_body(binding)
        self._bind_responses(binding)

        if self.generate_server:
            binding.request_type = self.allocator.package.allocate(f"{name}Request", op.location)
        return binding

    def _bind_path_params(self, binding: OperationBinding, arguments: NameScope) -> None:
        op = binding.operation
        declared = {p.name: p for p in op.parameters if p.location == "path"}
        placeholders = path_placeholders(op.path)

        for placeholder in placeholders:
            location = f"{op.location}.parameters.{placeholder}"
            param = declared.get(placeholder)
            if param is None:
                self.issues.warning(
                    location,
                    f"path placeholder {{{placeholder}}} has no declared parameter; "
                    "generated as a required string",
                )
                type_id = self.graph.scalar("string")
                description = ""
                constraints = Constraints()
            else:
                type_id = self.resolver.resolve_schema(
                    param.schema, f"{binding.method_name}{to_type_name(placeholder)}", location,
                )
                description = param.description
                constraints = self.resolver.constraints_for(param.schema, location)
            binding.path_params.append(ParameterBinding(
                name=placeholder,
                location="path",
                identifier=arguments.allocate(placeholder, location),
                required=True,
                type_id=type_id,
                description=description,
                deprecated=bool(param and param.deprecated),
                constraints=constraints,
            ))

        for name in sorted(set(declared) - set(placeholders)):
            self.issues.warning(
                f"{op.location}.parameters.{name}",
                f"path parameter {name!r} does not appear in the path template; ignored",
            )

    def _bind_params(self, binding: OperationBinding) -> None:
        op = binding.operation
        others = []
        for param in op.parameters:
            if param.location == "path":
                continue
            if param.location not in _PARAMS_LOCATIONS:
                self.issues.warning(
                    f"{op.location}.parameters.{param.name}",
                    f"parameter location {param.location!r} is not supported; ignored",
                )
                continue
            others.append(param)
        if not others:
            return

        params_type = self.allocator.package.allocate(f"{binding.method_name}Params", op.location)
        fields = self.allocator.new_scope(f"{params_type} fields")
        for param in sorted(others, key=lambda p: (p.name, _PARAMS_LOCATIONS.index(p.location))):
            location = f"{op.location}.parameters.{param.name}"
            identifier = fields.allocate(param.name, location)
            type_id = self.resolver.resolve_schema(param.schema, f"{params_type}{identifier}", location)
            binding.params.append(ParameterBinding(
                name=param.name,
                location=param.location,
                identifier=identifier,
                required=param.required,
                type_id=type_id,
                pointer=not param.required and not self.graph.is_nilable(type_id),
                description=param.description,
                deprecated=param.deprecated,
                constraints=self.resolver.constraints_for(param.schema, location),
            ))
        binding.params_type = params_type

    def _bind_body(self, binding: OperationBinding) -> None:
        body = binding.operation.request_body
        if body is None or not body.content:
            return
        content_type = _pick_content_type(body.content)
        if content_type is None:
            return
        location = f"{binding.location}.requestBody"
        type_id = None
        if "json" in content_type.lower():
            type_id = self.resolver.resolve_schema(
                body.content[content_type], f"{binding.method_name}RequestBody", location,
            )
        binding.body = BodyBinding(
            content_type=content_type,
            type_id=type_id,
            required=body.required,
            pointer=(
                type_id is not None
                and not body.required
                and not self.graph.is_nilable(type_id)
            ),
            description=body.description,
        )

    def _bind_responses(self, binding: OperationBinding) -> None:
        op = binding.operation
        for status in sorted(op.responses, key=_status_key):
            resp = op.responses[status]
            result = ResponseBinding(status=status, description=resp.description)
            content_type = _pick_content_type(resp.content)
            if content_type is not None and "json" in content_type.lower():
                schema = resp.content[content_type]
                if schema is not None:
                    suffix = "Response" if status.startswith("2") else f"{status}Response"
                    result.content_type = content_type
                    result.type_id = self.resolver.resolve_schema(
                        schema,
                        f"{binding.method_name}{to_type_name(suffix)}",
                        f"{op.location}.responses.{status}",
                    )
                    result.pointer = not self.graph.is_nilable(result.type_id)
            elif content_type is not None:
                result.content_type = content_type
            binding.responses.append(result)

        binding.result = self._select_result(binding.responses)

    @staticmethod
    def _select_result(responses: list[ResponseBinding]) -> ResponseBinding | None:
        typed = [r for r in responses if r.type_id is not None]
        for r in typed:
            if r.status.isdigit() and r.status.startswith("2"):
                return r
        for r in typed:
            if r.status.upper() == "2XX":
                return r
        for r in typed:
            if r.status.lower() == "default":
                return r
        return None
