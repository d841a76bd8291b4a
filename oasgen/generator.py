"""Run one generation pass: load, resolve, bind, plan and render.

    result = generate(source="petstore.yaml", generate_client=True)
    for artifact in result.artifacts:
        Path(out, artifact.file_name).write_text(artifact.content)

Every call owns its own GenerationContext (identifier scopes, type graph,
issue list); nothing is shared between runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from . import __version__
from .codegen import Artifact, Renderer, RenderJob
from .config import GeneratorConfig, build_config
from .context_builder import (
    EMITTER_NAMES,
    build_client_context,
    build_credentials_context,
    build_enforce_context,
    build_header_context,
    build_oauth2_context,
    build_oidc_context,
    build_security_context,
    build_server_context,
    build_types_context,
)
from .document import DocumentModel
from .errors import ConfigurationError, Issue, IssueList, Severity, StrictModeError
from .loader import build_document, load_document
from .naming import IdentifierAllocator
from .operations import OperationBinder, OperationBinding
from .schema_parser import TypeResolver
from .security import (
    EnforcementPlan,
    OAuth2FlowPlan,
    OIDCDiscoveryPlan,
    SecurityBinding,
    SecuritySchemeCompiler,
)
from .splitting import FileGroup, FileSplitPlanner, SplitPlan
from .type_graph import TypeGraph

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "API Client"


def default_fetch_user_agent() -> str:
    """User-Agent sent when fetching a document from a URL."""
    return f"oasgen/{__version__}"


@dataclass
class GenerationContext:
    """Mutable state of a single run."""

    document: DocumentModel
    config: GeneratorConfig
    issues: IssueList = field(default_factory=IssueList)
    graph: TypeGraph = field(default_factory=TypeGraph)
    allocator: IdentifierAllocator = field(init=False)
    operations: list[OperationBinding] = field(default_factory=list)
    security: list[SecurityBinding] = field(default_factory=list)
    oauth2: list[OAuth2FlowPlan] = field(default_factory=list)
    oidc: OIDCDiscoveryPlan | None = None
    enforcement: EnforcementPlan | None = None
    plan: SplitPlan = field(default_factory=SplitPlan)
    version: str = __version__

    def __post_init__(self) -> None:
        self.allocator = IdentifierAllocator(self.issues)

    @property
    def client_user_agent(self) -> str:
        if self.config.user_agent:
            return self.config.user_agent
        return f"oasgen/{self.version}/generated/{self.document.title or DEFAULT_TITLE}"


@dataclass
class GenerateResult:
    package_name: str
    artifacts: list[Artifact]
    issues: list[Issue]
    source_version: str = ""
    source_title: str = ""
    schema_count: int = 0
    type_count: int = 0
    operation_count: int = 0
    info_count: int = 0
    warning_count: int = 0
    error_count: int = 0
    critical_count: int = 0
    split_plan: SplitPlan | None = None
    success: bool = True

    def artifact(self, name: str) -> Artifact | None:
        for artifact in self.artifacts:
            if artifact.name == name:
                return artifact
        return None

    @property
    def artifact_names(self) -> list[str]:
        return [a.name for a in self.artifacts]

    @property
    def files(self) -> dict[str, str]:
        """File name to content, in artifact order."""
        return {a.file_name: a.content for a in self.artifacts}


def generate(
    document: DocumentModel | Mapping[str, Any] | None = None,
    *,
    source: str | Path | None = None,
    config: GeneratorConfig | None = None,
    **options: Any,
) -> GenerateResult:
    """Generate Go source for one OpenAPI document.

    Pass exactly one of ``document`` (a DocumentModel or the raw parsed
    document) and ``source`` (a file path or http(s) URL). Options are
    GeneratorConfig fields, given either as ``config`` or as keywords.

    Raises ConfigurationError for bad input selection or options, DocumentError
    when the source cannot be loaded, and StrictModeError in strict mode when
    any Warning or worse was recorded.
    """
    if (document is None) == (source is None):
        raise ConfigurationError("exactly one of document or source must be given")
    if config is not None and options:
        raise ConfigurationError("pass options either as config or as keywords, not both")
    if config is None:
        config = build_config(**options)

    if source is not None:
        document = load_document(source, user_agent=config.user_agent or default_fetch_user_agent())
    elif not isinstance(document, DocumentModel):
        document = build_document(document)

    ctx = GenerationContext(document=document, config=config)
    logger.debug(
        "generating package %s from %s %s (OpenAPI %s)",
        config.package_name, document.title or "untitled", document.api_version, document.version,
    )
    _resolve(ctx)
    artifacts = Renderer(
        lambda imports: build_header_context(ctx, imports), ctx.issues,
    ).render_all(_jobs(ctx))
    result = _result(ctx, artifacts)

    logger.info(
        "generated %d artifacts: %d types, %d operations, %d issues",
        len(artifacts), result.type_count, result.operation_count, len(result.issues),
    )

    if config.strict_mode and any(i.severity >= Severity.WARNING for i in ctx.issues):
        raise StrictModeError(result)
    return result


def _resolve(ctx: GenerationContext) -> None:
    config = ctx.config
    for location, message in ctx.document.problems:
        ctx.issues.critical(location, message)
    for name in EMITTER_NAMES:
        ctx.allocator.package.reserve(name)

    resolver = TypeResolver(
        ctx.document, ctx.graph, ctx.allocator, ctx.issues, use_pointers=config.use_pointers,
    )
    resolver.resolve_all()

    compiler = SecuritySchemeCompiler(ctx.document, ctx.allocator, ctx.issues)
    if config.generate_client or config.generate_server:
        binder = OperationBinder(
            ctx.document, resolver, ctx.allocator, ctx.issues,
            generate_server=config.generate_server,
        )
        ctx.operations = binder.bind_all()
        compiler.check_requirements(ctx.operations)

    if config.generate_client:
        ctx.security = compiler.compile()
        if config.generate_oauth2_flows:
            ctx.oauth2 = compiler.oauth2_plans()
        if config.generate_oidc_discovery and ctx.document.security_schemes:
            ctx.oidc = compiler.oidc_plan()
        if config.generate_security_enforce:
            ctx.enforcement = compiler.enforcement_plan(ctx.operations)

    planner = FileSplitPlanner(
        max_lines_per_file=config.max_lines_per_file,
        max_types_per_file=config.max_types_per_file,
        max_operations_per_file=config.max_operations_per_file,
        split_by_tag=config.split_by_tag,
        split_by_path_prefix=config.split_by_path_prefix,
    )
    ctx.plan = planner.plan(ctx.graph, ctx.operations)


def _group_operations(ctx: GenerationContext, group: FileGroup) -> list[OperationBinding]:
    names = set(group.operations)
    return [op for op in ctx.operations if op.method_name in names]


def _jobs(ctx: GenerationContext) -> list[RenderJob]:
    """Artifacts to render, in output order."""
    config = ctx.config
    groups = ctx.plan.groups if ctx.plan.needs_split else []
    jobs: list[RenderJob] = []

    if config.emit_types:
        has_unions = any(node.decode_table is not None for node in ctx.graph.named())
        if groups:
            jobs.append(RenderJob("types", "types.go.j2", build_types_context(
                ctx, set(ctx.plan.shared_types), [], has_unions,
            )))
            for group in groups:
                jobs.append(RenderJob(f"types_{group.name}", "types.go.j2", build_types_context(
                    ctx, set(group.types), _group_operations(ctx, group), False,
                )))
        else:
            jobs.append(RenderJob("types", "types.go.j2", build_types_context(
                ctx, {n.name for n in ctx.graph.named() if n.name}, ctx.operations, has_unions,
            )))

    if config.generate_client:
        jobs.append(RenderJob("client", "client.go.j2", build_client_context(
            ctx, [] if groups else ctx.operations, include_base=True,
        )))
        for group in groups:
            jobs.append(RenderJob(f"client_{group.name}", "client.go.j2", build_client_context(
                ctx, _group_operations(ctx, group), include_base=False,
            )))

    if config.generate_server:
        jobs.append(RenderJob("server", "server.go.j2", build_server_context(
            ctx, [] if groups else ctx.operations, include_base=True,
        )))
        for group in groups:
            jobs.append(RenderJob(f"server_{group.name}", "server.go.j2", build_server_context(
                ctx, _group_operations(ctx, group), include_base=False,
            )))

    if not config.generate_client:
        return jobs

    if config.generate_security and ctx.security:
        jobs.append(RenderJob("security_helpers", "security_helpers.go.j2", build_security_context(ctx)))
    for plan in ctx.oauth2:
        jobs.append(RenderJob(plan.artifact, "oauth2.go.j2", build_oauth2_context(plan)))
    if config.generate_credential_mgmt and ctx.security:
        jobs.append(RenderJob("credentials", "credentials.go.j2", build_credentials_context(ctx)))
    if ctx.enforcement is not None:
        jobs.append(RenderJob("security_enforce", "security_enforce.go.j2", build_enforce_context(
            ctx, [] if groups else None, include_base=True,
        )))
        for group in groups:
            jobs.append(RenderJob(
                f"security_enforce_{group.name}",
                "security_enforce.go.j2",
                build_enforce_context(ctx, group.operations, include_base=False),
            ))
    if ctx.oidc is not None:
        jobs.append(RenderJob("oidc_discovery", "oidc_discovery.go.j2", build_oidc_context(ctx)))
    return jobs


def _result(ctx: GenerationContext, artifacts: list[Artifact]) -> GenerateResult:
    issues = ctx.issues
    return GenerateResult(
        package_name=ctx.config.package_name,
        artifacts=artifacts,
        issues=issues.as_list(include_info=ctx.config.include_info),
        source_version=ctx.document.version,
        source_title=ctx.document.title,
        schema_count=len(ctx.document.schemas),
        type_count=len(ctx.graph.named()),
        operation_count=len(ctx.operations),
        info_count=issues.count(Severity.INFO),
        warning_count=issues.count(Severity.WARNING),
        error_count=issues.count(Severity.ERROR),
        critical_count=issues.count(Severity.CRITICAL),
        split_plan=ctx.plan,
        success=issues.count(Severity.CRITICAL) == 0,
    )
