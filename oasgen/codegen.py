"""Render templates into Go source artifacts.

Each content template renders only declarations. The header (generated-code
notice, package clause and the import block detected from the body) is
rendered separately and prepended.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import jinja2

from .context_builder import detect_imports, go_string
from .errors import IssueKind, IssueList

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"


@dataclass(frozen=True)
class Artifact:
    """One named Go source text."""

    name: str
    content: str

    @property
    def file_name(self) -> str:
        return f"{self.name}.go"


@dataclass
class RenderJob:
    name: str
    template: str
    context: dict[str, Any]


def create_environment() -> jinja2.Environment:
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(TEMPLATE_DIR)),
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
        undefined=jinja2.StrictUndefined,
        autoescape=False,
    )
    env.filters["go_string"] = go_string
    return env


class Renderer:
    """Render jobs in order; a failing template skips only its own artifact."""

    def __init__(
        self,
        header: Callable[[list[str]], dict[str, Any]],
        issues: IssueList,
        env: jinja2.Environment | None = None,
    ) -> None:
        self.env = env or create_environment()
        self.header = header
        self.issues = issues

    def render(self, job: RenderJob) -> Artifact | None:
        try:
            body = self.env.get_template(job.template).render(**job.context)
            body = body.strip("\n") + "\n"
            head = self.env.get_template("_header.go.j2").render(**self.header(detect_imports(body)))
        except jinja2.TemplateError as e:
            self.issues.error(
                IssueKind.RENDER_ERROR,
                job.name,
                f"rendering {job.template} failed: {e}",
            )
            logger.warning("artifact %s skipped: %s", job.name, e)
            return None
        return Artifact(name=job.name, content=f"{head}\n{body}")

    def render_all(self, jobs: list[RenderJob]) -> list[Artifact]:
        artifacts = []
        for job in jobs:
            artifact = self.render(job)
            if artifact is not None:
                artifacts.append(artifact)
                logger.debug("rendered %s (%d lines)", job.name, artifact.content.count("\n"))
        return artifacts
