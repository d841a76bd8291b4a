"""Issues and exceptions raised during code generation.

Problems local to one schema or operation are recorded as Issue entries and
never abort the run. Exceptions are reserved for problems that make the whole
run meaningless (bad configuration, unreadable source) and for decode
failures of discriminated unions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .generator import GenerateResult

logger = logging.getLogger(__name__)


class Severity(IntEnum):
    """Severity of a generation issue, ordered from least to most severe."""

    INFO = 0
    WARNING = 1
    ERROR = 2
    CRITICAL = 3

    def __str__(self) -> str:
        return self.name.capitalize()


class IssueKind(str, Enum):
    STRUCTURAL_ERROR = "StructuralError"
    NAMING_COLLISION_RESOLVED = "NamingCollisionResolved"
    UNSUPPORTED_FEATURE = "UnsupportedFeature"
    RENDER_ERROR = "RenderError"


@dataclass(frozen=True)
class Issue:
    severity: Severity
    message: str
    location: str
    kind: IssueKind

    def __str__(self) -> str:
        where = f" at {self.location}" if self.location else ""
        return f"[{self.severity}] {self.kind.value}{where}: {self.message}"


class IssueList:
    """Collects issues for one generation run, in the order they were raised."""

    def __init__(self) -> None:
        self._issues: list[Issue] = []

    def add(self, severity: Severity, kind: IssueKind, location: str, message: str) -> Issue:
        issue = Issue(severity=severity, message=message, location=location, kind=kind)
        self._issues.append(issue)
        if severity >= Severity.WARNING:
            logger.warning("%s", issue)
        else:
            logger.debug("%s", issue)
        return issue

    def info(self, kind: IssueKind, location: str, message: str) -> Issue:
        return self.add(Severity.INFO, kind, location, message)

    def warning(self, location: str, message: str) -> Issue:
        return self.add(Severity.WARNING, IssueKind.UNSUPPORTED_FEATURE, location, message)

    def error(self, kind: IssueKind, location: str, message: str) -> Issue:
        return self.add(Severity.ERROR, kind, location, message)

    def critical(self, location: str, message: str) -> Issue:
        return self.add(Severity.CRITICAL, IssueKind.STRUCTURAL_ERROR, location, message)

    def count(self, severity: Severity) -> int:
        return sum(1 for issue in self._issues if issue.severity == severity)

    def __iter__(self):
        return iter(self._issues)

    def __len__(self) -> int:
        return len(self._issues)

    def as_list(self, include_info: bool = True) -> list[Issue]:
        if include_info:
            return list(self._issues)
        return [i for i in self._issues if i.severity != Severity.INFO]


class OasgenError(Exception):
    """Base exception for all oasgen errors."""


class ConfigurationError(OasgenError):
    """Invalid caller configuration.

    Raised before any generation work starts, so no partial output exists.
    Examples:
        - "package name cannot be empty"
        - "must specify exactly one input source"
        - "max_lines_per_file must be >= 0"
    """


class DocumentError(OasgenError):
    """The source document could not be read, parsed or recognized."""


class StrictModeError(OasgenError):
    """Strict mode found Warning/Error/Critical issues after the pass.

    The full result, artifacts included, is available as ``result`` so
    callers can still inspect what was produced.
    """

    def __init__(self, result: GenerateResult) -> None:
        self.result = result
        problems = [i for i in result.issues if i.severity >= Severity.WARNING]
        super().__init__(
            f"strict mode: generation produced {len(problems)} issue(s) "
            f"of severity Warning or above"
        )


class DecodeError(OasgenError):
    """Base class for discriminated union decode failures."""

    def __init__(self, type_name: str, property_name: str, message: str) -> None:
        self.type_name = type_name
        self.property_name = property_name
        super().__init__(message)


class MissingDiscriminator(DecodeError):
    def __init__(self, type_name: str, property_name: str) -> None:
        super().__init__(
            type_name,
            property_name,
            f"{type_name}: discriminator property {property_name!r} is missing",
        )


class UnknownDiscriminator(DecodeError):
    def __init__(self, type_name: str, property_name: str, value: Any) -> None:
        self.value = value
        super().__init__(
            type_name,
            property_name,
            f"{type_name}: unknown {property_name!r} discriminator value {value!r}",
        )
