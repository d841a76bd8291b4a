"""oasgen: generate Go types, clients and servers from OpenAPI documents."""

from __future__ import annotations

__version__ = "0.1.0"

from .codegen import Artifact  # noqa: E402
from .config import GeneratorConfig, build_config  # noqa: E402
from .document import DocumentModel  # noqa: E402
from .errors import (  # noqa: E402
    ConfigurationError,
    DecodeError,
    DocumentError,
    Issue,
    IssueKind,
    MissingDiscriminator,
    OasgenError,
    Severity,
    StrictModeError,
    UnknownDiscriminator,
)
from .generator import GenerateResult, GenerationContext, generate  # noqa: E402
from .loader import build_document, load_document  # noqa: E402

__all__ = [
    "Artifact",
    "ConfigurationError",
    "DecodeError",
    "DocumentError",
    "DocumentModel",
    "GenerateResult",
    "GenerationContext",
    "GeneratorConfig",
    "Issue",
    "IssueKind",
    "MissingDiscriminator",
    "OasgenError",
    "Severity",
    "StrictModeError",
    "UnknownDiscriminator",
    "__version__",
    "build_config",
    "build_document",
    "generate",
    "load_document",
]
