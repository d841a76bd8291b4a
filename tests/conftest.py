"""Shared fixture documents.

Documents are plain dicts, as yaml.safe_load would return them, so each
test can build exactly the DocumentModel it needs.
"""

from __future__ import annotations

import copy
from typing import Any

import pytest

from oasgen.document import DocumentModel
from oasgen.errors import IssueList
from oasgen.loader import build_document
from oasgen.naming import IdentifierAllocator
from oasgen.operations import OperationBinder, OperationBinding
from oasgen.schema_parser import TypeResolver
from oasgen.type_graph import TypeGraph


def _ref(name: str) -> dict[str, str]:
    return {"$ref": f"#/components/schemas/{name}"}


def _json(schema: dict[str, Any]) -> dict[str, Any]:
    return {"application/json": {"schema": schema}}


PET_ID_PARAM = {
    "name": "petId",
    "in": "path",
    "required": True,
    "schema": {"type": "integer", "format": "int64"},
}

PETSTORE: dict[str, Any] = {
    "openapi": "3.0.3",
    "info": {"title": "Petstore", "version": "1.0.0"},
    "security": [{"api_key": []}],
    "paths": {
        "/pets": {
            "get": {
                "operationId": "listPets",
                "summary": "List all pets",
                "tags": ["pets"],
                "parameters": [
                    {"name": "limit", "in": "query", "schema": {"type": "integer", "format": "int32"}},
                ],
                "responses": {
                    "200": {
                        "description": "A list of pets",
                        "content": _json({"type": "array", "items": _ref("Pet")}),
                    },
                },
            },
            "post": {
                "operationId": "createPet",
                "tags": ["pets"],
                "requestBody": {"required": True, "content": _json(_ref("Pet"))},
                "responses": {
                    "201": {"description": "Created", "content": _json(_ref("Pet"))},
                },
            },
        },
        "/pets/{petId}": {
            "get": {
                "tags": ["pets"],
                "parameters": [
                    PET_ID_PARAM,
                    {"name": "limit", "in": "query", "schema": {"type": "integer"}},
                ],
                "responses": {
                    "200": {"description": "A pet", "content": _json(_ref("Pet"))},
                    "default": {"description": "Unexpected error", "content": _json(_ref("Error"))},
                },
            },
            "delete": {
                "operationId": "deletePet",
                "tags": ["pets"],
                "parameters": [PET_ID_PARAM],
                "security": [],
                "responses": {"204": {"description": "Deleted"}},
            },
        },
        "/store/inventory": {
            "get": {
                "operationId": "getInventory",
                "tags": ["store"],
                "responses": {
                    "200": {
                        "description": "Counts by status",
                        "content": _json({
                            "type": "object",
                            "additionalProperties": {"type": "integer", "format": "int32"},
                        }),
                    },
                },
            },
        },
    },
    "components": {
        "schemas": {
            "Pet": {
                "type": "object",
                "required": ["name"],
                "properties": {
                    "id": {"type": "integer", "format": "int64"},
                    "name": {"type": "string", "minLength": 1, "maxLength": 64},
                    "status": _ref("Status"),
                    "tags": {"type": "array", "items": {"type": "string"}},
                },
            },
            "Status": {"type": "string", "enum": ["available", "pending", "sold"]},
            "Error": {
                "type": "object",
                "required": ["code", "message"],
                "properties": {
                    "code": {"type": "integer", "format": "int32"},
                    "message": {"type": "string"},
                },
            },
        },
        "securitySchemes": {
            "api_key": {"type": "apiKey", "in": "header", "name": "X-API-Key"},
        },
    },
}

ANIMALS: dict[str, Any] = {
    "openapi": "3.0.3",
    "info": {"title": "Zoo", "version": "2.0"},
    "paths": {},
    "components": {
        "schemas": {
            "Cat": {
                "type": "object",
                "required": ["petType"],
                "properties": {"petType": {"type": "string"}, "meows": {"type": "boolean"}},
            },
            "Dog": {
                "type": "object",
                "required": ["petType"],
                "properties": {"petType": {"type": "string"}, "barks": {"type": "boolean"}},
            },
            "Lizard": {
                "type": "object",
                "properties": {"petType": {"type": "string"}},
            },
            "Animal": {
                "oneOf": [_ref("Cat"), _ref("Dog"), _ref("Lizard")],
                "discriminator": {
                    "propertyName": "petType",
                    "mapping": {
                        "cat": "#/components/schemas/Cat",
                        "dog": "#/components/schemas/Dog",
                    },
                },
            },
            "Shape": {
                "oneOf": [
                    {"type": "object", "properties": {"radius": {"type": "number"}}},
                    {"type": "object", "properties": {"side": {"type": "number"}}},
                ],
            },
        },
    },
}

SWAGGER: dict[str, Any] = {
    "swagger": "2.0",
    "info": {"title": "Legacy", "version": "0.9"},
    "consumes": ["application/json"],
    "produces": ["application/json"],
    "securityDefinitions": {
        "basicAuth": {"type": "basic"},
        "petstore_auth": {
            "type": "oauth2",
            "flow": "accessCode",
            "authorizationUrl": "https://auth.example.com/authorize",
            "tokenUrl": "https://auth.example.com/token",
            "scopes": {"read:pets": "read your pets", "write:pets": "modify pets"},
        },
    },
    "parameters": {
        "pageParam": {"name": "page", "in": "query", "type": "integer", "format": "int32"},
    },
    "paths": {
        "/users/{userId}": {
            "parameters": [{"name": "userId", "in": "path", "required": True, "type": "string"}],
            "get": {
                "operationId": "getUser",
                "parameters": [{"$ref": "#/parameters/pageParam"}],
                "responses": {"200": {"description": "ok", "schema": {"$ref": "#/definitions/User"}}},
            },
            "put": {
                "operationId": "updateUser",
                "parameters": [
                    {"name": "user", "in": "body", "required": True, "schema": {"$ref": "#/definitions/User"}},
                ],
                "responses": {"200": {"description": "ok"}},
            },
        },
        "/upload": {
            "post": {
                "operationId": "uploadFile",
                "consumes": ["multipart/form-data"],
                "parameters": [
                    {"name": "file", "in": "formData", "type": "file", "required": True},
                    {"name": "comment", "in": "formData", "type": "string"},
                ],
                "responses": {"200": {"description": "ok"}},
            },
        },
    },
    "definitions": {
        "User": {
            "type": "object",
            "required": ["id"],
            "properties": {
                "id": {"type": "string"},
                "nickname": {"type": "string", "x-nullable": True},
            },
        },
    },
}


def components(**schemas: Any) -> dict[str, Any]:
    """Minimal OAS 3 document holding only the given schemas."""
    return {
        "openapi": "3.0.3",
        "info": {"title": "Test", "version": "1"},
        "paths": {},
        "components": {"schemas": schemas},
    }


def resolve(raw: dict[str, Any], use_pointers: bool = True) -> tuple[TypeResolver, IssueList]:
    """Build a document and resolve every named schema."""
    issues = IssueList()
    document = build_document(raw)
    resolver = TypeResolver(
        document, TypeGraph(), IdentifierAllocator(issues), issues, use_pointers=use_pointers,
    )
    resolver.resolve_all()
    return resolver, issues


def bind(
    raw: dict[str, Any], generate_server: bool = False,
) -> tuple[dict[str, OperationBinding], TypeGraph, IssueList]:
    """Resolve a document and bind its operations, keyed by method name."""
    issues = IssueList()
    document = build_document(raw)
    allocator = IdentifierAllocator(issues)
    resolver = TypeResolver(document, TypeGraph(), allocator, issues)
    resolver.resolve_all()
    binder = OperationBinder(document, resolver, allocator, issues, generate_server=generate_server)
    return {b.method_name: b for b in binder.bind_all()}, resolver.graph, issues


@pytest.fixture
def petstore() -> dict[str, Any]:
    return copy.deepcopy(PETSTORE)


@pytest.fixture
def petstore_doc(petstore) -> DocumentModel:
    return build_document(petstore)


@pytest.fixture
def animals() -> dict[str, Any]:
    return copy.deepcopy(ANIMALS)


@pytest.fixture
def swagger() -> dict[str, Any]:
    return copy.deepcopy(SWAGGER)
