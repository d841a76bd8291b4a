"""Compile security schemes into authentication-helper plans.

Helper names are With<Scheme><Suffix>:
  apiKey header  -> WithApiKeyAPIKey
  apiKey query   -> WithApiKeyAPIKeyQuery
  apiKey cookie  -> WithSessionAPIKeyCookie
  http basic     -> WithBasicBasicAuth(username, password)
  http bearer    -> WithBearerAuthBearerToken
  oauth2         -> WithOauth2OAuth2Token
  openIdConnect  -> WithOidcOIDCToken
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from .document import DocumentModel, OAuthFlow, SecurityRequirement, SecurityScheme
from .errors import IssueList
from .naming import IdentifierAllocator, sanitize_group_name, to_type_name

if TYPE_CHECKING:
    from .operations import OperationBinding

logger = logging.getLogger(__name__)

_API_KEY_SUFFIXES: dict[str, str] = {
    "header": "APIKey",
    "query": "APIKeyQuery",
    "cookie": "APIKeyCookie",
}

# OAS 3 flow names, in the order their endpoints are preferred
_AUTHORIZE_FLOWS: tuple[str, ...] = ("authorizationCode", "implicit")
_TOKEN_FLOWS: tuple[str, ...] = ("authorizationCode", "clientCredentials", "password")
_ALL_FLOWS: tuple[str, ...] = ("implicit", "password", "clientCredentials", "authorizationCode")

_LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


def is_secure_url(url: str) -> bool:
    """HTTPS anywhere, plain HTTP only for loopback hosts."""
    try:
        parts = urlsplit(url)
        host = parts.hostname or ""
    except ValueError:
        return False
    if parts.scheme == "https":
        return True
    return parts.scheme == "http" and host in _LOCAL_HOSTS


def collect_scopes(flows: dict[str, OAuthFlow]) -> dict[str, str]:
    """Scopes of every flow merged; the first description seen wins."""
    scopes: dict[str, str] = {}
    for flow_name in _ALL_FLOWS:
        flow = flows.get(flow_name)
        if flow is None:
            continue
        for scope, description in flow.scopes.items():
            scopes.setdefault(scope, description)
    return dict(sorted(scopes.items()))


@dataclass
class SecurityBinding:
    scheme_name: str
    kind: str
    # where the credential goes: header, query or cookie
    site: str
    helper: str
    # header, query parameter or cookie name
    param_name: str
    suffix: str
    http_scheme: str = ""
    bearer_format: str = ""
    scopes: list[str] = field(default_factory=list)
    documentation: list[str] = field(default_factory=list)
    location: str = ""

    @property
    def is_basic(self) -> bool:
        return self.kind == "http" and self.http_scheme == "basic"

    @property
    def authorization_prefix(self) -> str:
        """Prefix placed before the credential in the Authorization header."""
        if self.kind in ("oauth2", "openIdConnect") or self.http_scheme == "bearer":
            return "Bearer"
        return self.http_scheme[:1].upper() + self.http_scheme[1:]


@dataclass
class OAuth2FlowPlan:
    scheme_name: str
    artifact: str
    prefix: str
    config_type: str
    constructor: str
    token_type: str
    flows: dict[str, OAuthFlow]
    scopes: dict[str, str]
    location: str = ""

    def _first_url(self, flow_names: tuple[str, ...], attr: str) -> str:
        for name in flow_names:
            flow = self.flows.get(name)
            if flow is not None and getattr(flow, attr):
                return getattr(flow, attr)
        return ""

    @property
    def authorization_url(self) -> str:
        return self._first_url(_AUTHORIZE_FLOWS, "authorization_url")

    @property
    def token_url(self) -> str:
        return self._first_url(_TOKEN_FLOWS, "token_url")

    @property
    def refresh_url(self) -> str:
        return self._first_url(_ALL_FLOWS, "refresh_url") or self.token_url

    def has(self, flow_name: str) -> bool:
        return flow_name in self.flows


@dataclass
class OIDCDiscoveryPlan:
    scheme_name: str
    url: str


@dataclass
class EnforcementPlan:
    """Acceptable scheme combinations per operation.

    An empty requirement list means the operation needs no authentication.
    """

    global_security: list[SecurityRequirement]
    operations: dict[str, list[SecurityRequirement]] = field(default_factory=dict)
    schemes: list[str] = field(default_factory=list)

    def for_methods(self, method_names: list[str]) -> dict[str, list[SecurityRequirement]]:
        return {name: self.operations[name] for name in method_names if name in self.operations}


class SecuritySchemeCompiler:
    def __init__(
        self,
        document: DocumentModel,
        allocator: IdentifierAllocator,
        issues: IssueList,
    ) -> None:
        self.document = document
        self.allocator = allocator
        self.issues = issues

    def scheme_location(self, name: str) -> str:
        if self.document.is_oas2:
            return f"securityDefinitions.{name}"
        return f"components.securitySchemes.{name}"

    def compile(self) -> list[SecurityBinding]:
        """One helper binding per supported scheme, in scheme-name order."""
        bindings = []
        for name in sorted(self.document.security_schemes):
            binding = self._compile_scheme(self.document.security_schemes[name])
            if binding is not None:
                bindings.append(binding)
        logger.debug("compiled %d security helpers", len(bindings))
        return bindings

    def _compile_scheme(self, scheme: SecurityScheme) -> SecurityBinding | None:
        location = self.scheme_location(scheme.name)
        docs = [scheme.description] if scheme.description else []

        if scheme.type == "apiKey":
            suffix = _API_KEY_SUFFIXES.get(scheme.location)
            if suffix is None or not scheme.param_name:
                self.issues.warning(
                    location,
                    f"apiKey scheme with location {scheme.location!r} is not supported; skipped",
                )
                return None
            return self._binding(scheme, suffix, scheme.location, scheme.param_name, docs, location)

        if scheme.type == "http":
            http_scheme = scheme.scheme.lower()
            if http_scheme == "basic":
                suffix = "BasicAuth"
            elif http_scheme == "bearer":
                suffix = "BearerToken"
                if scheme.bearer_format:
                    docs.append(f"Bearer format: {scheme.bearer_format}")
            else:
                suffix = "Authorization"
                self.issues.warning(
                    location,
                    f"HTTP authentication scheme {scheme.scheme!r} has no dedicated helper; "
                    "generated a raw Authorization header helper",
                )
            binding = self._binding(scheme, suffix, "header", "Authorization", docs, location)
            binding.http_scheme = http_scheme
            binding.bearer_format = scheme.bearer_format
            return binding

        if scheme.type == "oauth2":
            scopes = collect_scopes(scheme.flows)
            if scopes:
                docs.append("Available scopes:")
                docs.extend(
                    f"  - {scope}: {desc}" if desc else f"  - {scope}"
                    for scope, desc in scopes.items()
                )
            binding = self._binding(scheme, "OAuth2Token", "header", "Authorization", docs, location)
            binding.scopes = list(scopes)
            return binding

        if scheme.type == "openIdConnect":
            if scheme.openid_connect_url:
                docs.append(f"OpenID Connect discovery URL: {scheme.openid_connect_url}")
            return self._binding(scheme, "OIDCToken", "header", "Authorization", docs, location)

        self.issues.warning(location, f"security scheme type {scheme.type!r} is not supported; skipped")
        return None

    def _binding(
        self,
        scheme: SecurityScheme,
        suffix: str,
        site: str,
        param_name: str,
        docs: list[str],
        location: str,
    ) -> SecurityBinding:
        helper = self.allocator.package.allocate(
            f"With{to_type_name(scheme.name)}{suffix}", location,
        )
        return SecurityBinding(
            scheme_name=scheme.name,
            kind=scheme.type,
            site=site,
            helper=helper,
            param_name=param_name,
            suffix=suffix,
            documentation=docs,
            location=location,
        )

    def check_requirements(self, operations: list[OperationBinding]) -> None:
        """Warn about requirements naming schemes the document never declares."""
        declared = self.document.security_schemes
        for req in self.document.security:
            for name in sorted(req):
                if name not in declared:
                    self.issues.warning("security", f"undeclared security scheme {name!r}")
        for op in operations:
            if op.operation.security is None:
                continue
            for req in op.operation.security:
                for name in sorted(req):
                    if name not in declared:
                        self.issues.warning(
                            f"{op.location}.security",
                            f"undeclared security scheme {name!r}",
                        )

    def oauth2_plans(self) -> list[OAuth2FlowPlan]:
        plans = []
        artifacts = self.allocator.scope("artifacts", normalize=sanitize_group_name)
        for name in sorted(self.document.security_schemes):
            scheme = self.document.security_schemes[name]
            if scheme.type != "oauth2" or not scheme.flows:
                continue
            location = self.scheme_location(name)
            prefix = to_type_name(name)
            plan = OAuth2FlowPlan(
                scheme_name=name,
                artifact=artifacts.allocate(f"oauth2_{name}", location),
                prefix=prefix,
                config_type=self.allocator.package.allocate(f"{prefix}OAuth2Config", location),
                constructor=self.allocator.package.allocate(f"New{prefix}OAuth2Config", location),
                token_type=self.allocator.package.allocate(f"{prefix}Token", location),
                flows=dict(scheme.flows),
                scopes=collect_scopes(scheme.flows),
                location=location,
            )
            for label, url in (("authorization", plan.authorization_url), ("token", plan.token_url)):
                if url and not is_secure_url(url):
                    self.issues.warning(location, f"OAuth2 {label} URL uses insecure scheme: {url}")
            plans.append(plan)
        return plans

    def oidc_plan(self) -> OIDCDiscoveryPlan:
        for name in sorted(self.document.security_schemes):
            scheme = self.document.security_schemes[name]
            if scheme.type == "openIdConnect" and scheme.openid_connect_url:
                url = scheme.openid_connect_url
                if not is_secure_url(url):
                    self.issues.warning(
                        self.scheme_location(name),
                        f"OpenID Connect discovery URL uses insecure scheme: {url}",
                    )
                return OIDCDiscoveryPlan(scheme_name=name, url=url)
        return OIDCDiscoveryPlan(scheme_name="", url="")

    def enforcement_plan(self, operations: list[OperationBinding]) -> EnforcementPlan:
        plan = EnforcementPlan(
            global_security=list(self.document.security),
            schemes=sorted(self.document.security_schemes),
        )
        for op in operations:
            plan.operations[op.method_name] = list(op.security)
        return plan
