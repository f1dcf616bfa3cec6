"""Shared page layout.

Bodies are Markdown; they are converted to HTML and wrapped in the site shell
(navigation, stylesheet, injected ``<head>`` fragment).
"""

from __future__ import annotations

import re

import markdown
from jinja2 import Template, TemplateError
from markupsafe import Markup

from vanity_core.errors import LayoutRenderError
from vanity_core.template_store import (
    LAYOUT_TEMPLATE,
    MARKDOWN_SPECIAL,
    TEMPLATES_DIR,
    build_environment,
    compile_template,
)

MD_EXTENSIONS = ["fenced_code", "tables"]

_CLOSING_HASHES_RE = re.compile(r"(?<!\\)#+$")
_BACKSLASH_ESCAPE_RE = re.compile(rf"\\({MARKDOWN_SPECIAL})")


def _extract_title(text: str) -> str | None:
    for line in text.splitlines():
        if line.startswith("# "):
            title = _CLOSING_HASHES_RE.sub("", line[2:].strip()).strip()
            title = _BACKSLASH_ESCAPE_RE.sub(r"\1", title)
            if title:
                return title
    return None


class PageRenderer:
    def __init__(self, *, site: str, layout: Template | None = None) -> None:
        self.site = site
        if layout is None:
            source = (TEMPLATES_DIR / LAYOUT_TEMPLATE).read_text(encoding="utf-8")
            layout = compile_template(build_environment(), source, name=LAYOUT_TEMPLATE)
        self._layout = layout

    def render(self, body: bytes, *, head: str = "") -> bytes:
        """Render a Markdown body into a complete HTML document.

        ``head`` is trusted markup (it comes out of an autoescaped template)
        and is injected as-is.
        """

        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise LayoutRenderError(f"decode body: {exc}") from exc

        # Markdown instances keep per-document state; never share one.
        md = markdown.Markdown(extensions=MD_EXTENSIONS)
        html = md.convert(text)

        # Body text was produced by autoescaped templates, so the heading is
        # already safe markup.
        title = _extract_title(text)
        try:
            page = self._layout.render(
                title=Markup(title) if title else self.site,
                head=Markup(head),
                body=Markup(html),
                site=self.site,
            )
        except TemplateError as exc:
            raise LayoutRenderError(f"render layout: {exc}") from exc
        return page.encode("utf-8")
