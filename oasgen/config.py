"""Generator configuration.

All options have defaults; pass only what differs. Unknown options and
invalid values are rejected up front with ConfigurationError.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .naming import GO_KEYWORDS

_PACKAGE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class GeneratorConfig(BaseModel):
    """Options for one generation run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Output
    package_name: str = "api"
    generate_client: bool = False
    generate_server: bool = False
    generate_types: bool = True
    use_pointers: bool = True
    include_validation: bool = True

    # Diagnostics
    strict_mode: bool = False
    include_info: bool = True

    # Empty means oasgen/<version>/generated/<title>
    user_agent: str = ""

    # File splitting, 0 = unlimited
    max_lines_per_file: int = Field(default=2000, ge=0)
    max_types_per_file: int = Field(default=200, ge=0)
    max_operations_per_file: int = Field(default=100, ge=0)
    split_by_tag: bool = True
    split_by_path_prefix: bool = True

    # Security artifacts
    generate_security: bool = True
    generate_oauth2_flows: bool = False
    generate_credential_mgmt: bool = False
    generate_security_enforce: bool = False
    generate_oidc_discovery: bool = False

    @field_validator("package_name")
    @classmethod
    def validate_package_name(cls, v: str) -> str:
        """Package name must be a Go identifier and not a keyword."""
        if not v or not v.strip():
            raise ValueError("package name cannot be empty")
        if not _PACKAGE_NAME.match(v):
            raise ValueError(f"package name {v!r} is not a valid Go identifier")
        if v in GO_KEYWORDS:
            raise ValueError(f"package name {v!r} is a Go keyword")
        return v

    @property
    def emit_types(self) -> bool:
        """Types are always emitted when a client or server is requested."""
        return self.generate_types or self.generate_client or self.generate_server


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        where = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        if err.get("type") == "extra_forbidden":
            msg = "unknown option"
        parts.append(f"{where}: {msg}" if where else msg)
    return "; ".join(parts)


def build_config(**options: Any) -> GeneratorConfig:
    """Build a GeneratorConfig, raising ConfigurationError on bad input."""
    try:
        return GeneratorConfig(**options)
    except ValidationError as e:
        raise ConfigurationError(_format_validation_error(e)) from e
