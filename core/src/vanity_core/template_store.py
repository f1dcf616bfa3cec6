from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from jinja2 import Environment, StrictUndefined, Template, TemplateError, TemplateSyntaxError

from vanity_core.errors import TemplateCompileError, TemplateRenderError

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"

INDEX_TEMPLATE = "index.md"
REPO_TEMPLATE = "repo.md.j2"
HEAD_TEMPLATE = "head.html.j2"
LAYOUT_TEMPLATE = "layout.html.j2"

# Characters Python-Markdown (with the tables extension) takes a backslash
# escape for. "<", ">" and "&" are left to HTML autoescaping.
MARKDOWN_SPECIAL = r"[\\`*_{}\[\]()#+\-.!|]"

_MARKDOWN_SPECIAL_RE = re.compile(f"({MARKDOWN_SPECIAL})")
_LINE_BREAKS_RE = re.compile(r"[\r\n]+")


def markdown_escape(value: Any) -> str:
    """Make text inert when the rendered template is parsed as Markdown.

    Autoescaping still applies to the result, so HTML stays neutralised too.
    Line breaks become spaces so a value can never start a new block.
    """

    text = _LINE_BREAKS_RE.sub(" ", str(value))
    return _MARKDOWN_SPECIAL_RE.sub(r"\\\1", text)


def build_environment() -> Environment:
    # Repository names come straight from the URL: everything is autoescaped,
    # and Markdown templates also run them through md_escape.
    env = Environment(
        autoescape=True,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )
    env.filters["md_escape"] = markdown_escape
    return env


def compile_template(env: Environment, source: str, *, name: str) -> Template:
    try:
        return env.from_string(source)
    except TemplateSyntaxError as exc:
        raise TemplateCompileError(f"compile {name}: {exc}") from exc


@dataclass(frozen=True)
class PageRequest:
    repo_name: str
    source_host: str
    serving_host: str

    def template_context(self) -> dict[str, str]:
        return {"repo": self.repo_name, "source": self.source_host, "host": self.serving_host}


@dataclass(frozen=True)
class TemplateSet:
    """The index, repository body and head templates.

    Compiled once at startup and only ever rendered afterwards.
    """

    index: Template
    repo: Template
    head: Template

    @classmethod
    def from_sources(cls, *, index: str, repo: str, head: str) -> TemplateSet:
        env = build_environment()
        return cls(
            index=compile_template(env, index, name=INDEX_TEMPLATE),
            repo=compile_template(env, repo, name=REPO_TEMPLATE),
            head=compile_template(env, head, name=HEAD_TEMPLATE),
        )

    @classmethod
    def load(cls, directory: Path = TEMPLATES_DIR) -> TemplateSet:
        def _read(name: str) -> str:
            try:
                return (directory / name).read_text(encoding="utf-8")
            except OSError as exc:
                raise TemplateCompileError(f"read {name}: {exc}") from exc

        return cls.from_sources(
            index=_read(INDEX_TEMPLATE),
            repo=_read(REPO_TEMPLATE),
            head=_read(HEAD_TEMPLATE),
        )

    def render_index_body(self, **context: Any) -> bytes:
        return _render(self.index, context, stage="render index")

    def render_repo_body(self, page: PageRequest) -> bytes:
        return _render(self.repo, page.template_context(), stage="render repo")

    def render_head(self, page: PageRequest) -> bytes:
        return _render(self.head, page.template_context(), stage="render head")


def _render(template: Template, context: dict[str, Any], *, stage: str) -> bytes:
    try:
        return template.render(context).encode("utf-8")
    except TemplateError as exc:
        raise TemplateRenderError(f"{stage}: {exc}", stage=stage) from exc
