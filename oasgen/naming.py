"""Convert OpenAPI names to Go identifiers and keep them unique per scope.

Conversions:
  pet_store        -> PetStore      (to_type_name / to_field_name)
  @id              -> Id
  2fa              -> T2fa
  type             -> Type_         (Go keywords, case-insensitive)
  pet-id           -> petId         (to_param_name)
  GET /pets/{id}   -> GetPetsById   (method_name_from_path)
  User Accounts    -> user_accounts (sanitize_group_name)

Every emission scope (package, client methods, one struct's fields, one
operation's arguments) gets its own NameScope. A name that normalizes to an
identifier already taken in the scope gets a numeric suffix in first-seen
order: Id, Id2, Id3.
"""

from __future__ import annotations

import logging
import re
from typing import Callable

from .errors import IssueKind, IssueList

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 200

# Keywords only. Predeclared identifiers like "error" may be shadowed.
GO_KEYWORDS = frozenset({
    "break", "case", "chan", "const", "continue", "default", "defer", "else",
    "fallthrough", "for", "func", "go", "goto", "if", "import", "interface",
    "map", "package", "range", "return", "select", "struct", "switch", "type",
    "var",
})


def escape_reserved_word(name: str) -> str:
    """Append "_" to a name that is a Go keyword in any letter case."""
    if name.lower() in GO_KEYWORDS:
        return name + "_"
    return name


def to_type_name(s: str) -> str:
    """Convert an OpenAPI name to an exported PascalCase Go identifier."""
    if not s:
        return "Type"

    chars: list[str] = []
    capitalize_next = True
    for ch in s:
        if ch.isalnum():
            chars.append(ch.upper() if capitalize_next else ch)
            capitalize_next = False
        else:
            capitalize_next = True
    name = "".join(chars)

    if not name:
        return "Type"
    if not name[0].isalpha():
        name = "T" + name
    return escape_reserved_word(name)


def to_field_name(s: str) -> str:
    return to_type_name(s)


def to_param_name(s: str) -> str:
    """Convert an OpenAPI name to an unexported camelCase Go identifier."""
    name = to_type_name(s)
    name = name[:1].lower() + name[1:]
    return escape_reserved_word(name) if name else "param"


def method_name_from_path(method: str, path: str) -> str:
    """Derive a method name from the HTTP verb and path template.

    Placeholders render as By<Param>, in path order.
    """
    path_part = path.replace("/", " ").replace("{", "By ").replace("}", "")
    return to_type_name(f"{method} {path_part}")


def method_name(operation_id: str, method: str, path: str) -> str:
    if operation_id:
        return to_type_name(operation_id)
    return method_name_from_path(method, path)


def sanitize_group_name(name: str) -> str:
    """Lower snake_case group name usable as a file-name suffix."""
    name = name.lower().replace(" ", "_").replace("-", "_")
    name = re.sub(r"[^a-z0-9_]", "", name)
    name = re.sub(r"_+", "_", name).strip("_")
    return name or "misc"


def clean_description(s: str) -> str:
    """Flatten a description to one comment line, truncated with '...'."""
    s = s.replace("\r\n", " ").replace("\n", " ").strip()
    if len(s) > MAX_DESCRIPTION_LENGTH:
        s = s[:MAX_DESCRIPTION_LENGTH - 3] + "..."
    return s


class NameScope:
    """One identifier table. Allocation is first come, first served."""

    def __init__(
        self,
        name: str,
        issues: IssueList,
        normalize: Callable[[str], str] = to_type_name,
    ) -> None:
        self.name = name
        self._issues = issues
        self._normalize = normalize
        self._taken: set[str] = set()
        self._order: list[str] = []

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._taken

    def __len__(self) -> int:
        return len(self._order)

    @property
    def identifiers(self) -> list[str]:
        """Identifiers in allocation order."""
        return list(self._order)

    def reserve(self, identifier: str) -> None:
        """Mark an identifier as taken without normalizing or reporting it."""
        if identifier not in self._taken:
            self._taken.add(identifier)
            self._order.append(identifier)

    def allocate(self, raw: str, location: str = "") -> str:
        """Return a unique identifier for raw, suffixing on collision."""
        base = self._normalize(raw)
        identifier = base
        n = 2
        while identifier in self._taken:
            identifier = f"{base}{n}"
            n += 1
        self.reserve(identifier)
        if identifier != base:
            self._issues.info(
                IssueKind.NAMING_COLLISION_RESOLVED,
                location,
                f"{raw!r} renamed to {identifier} in {self.name} scope "
                f"({base} already declared)",
            )
        return identifier

    def derive(self, *parts: str, location: str = "") -> str:
        """Allocate an identifier built by concatenating existing identifiers."""
        return self.allocate("".join(parts), location)


class IdentifierAllocator:
    """Hands out one NameScope per emission scope for a single run."""

    def __init__(self, issues: IssueList) -> None:
        self._issues = issues
        self._scopes: dict[str, NameScope] = {}

    def scope(self, name: str, normalize: Callable[[str], str] = to_type_name) -> NameScope:
        existing = self._scopes.get(name)
        if existing is not None:
            return existing
        created = NameScope(name, self._issues, normalize)
        self._scopes[name] = created
        return created

    def new_scope(self, name: str, normalize: Callable[[str], str] = to_type_name) -> NameScope:
        """Create a scope that is not shared, e.g. the fields of one struct."""
        return NameScope(name, self._issues, normalize)

    @property
    def package(self) -> NameScope:
        return self.scope("package")
