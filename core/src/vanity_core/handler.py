from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from email.utils import format_datetime, parsedate_to_datetime
from typing import Protocol

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp, Receive, Scope, Send

from vanity_core.config import VanityConfig
from vanity_core.errors import MethodNotAllowedError, VanityError
from vanity_core.layout import PageRenderer
from vanity_core.observability import HTTPRequestInfo, Observer, RequestEvent
from vanity_core.responses import ObservedResponse
from vanity_core.routing import IndexRoute, resolve_route
from vanity_core.template_store import PageRequest, TemplateSet

HTML_MEDIA_TYPE = "text/html"
TEXT_MEDIA_TYPE = "text/plain"


@dataclass(frozen=True)
class RenderedIndex:
    body: bytes
    modified: datetime

    @classmethod
    def build(
        cls, templates: TemplateSet, renderer: PageRenderer, config: VanityConfig
    ) -> RenderedIndex:
        body = templates.render_index_body(host=config.host, source=config.source)
        page = renderer.render(body)
        # HTTP dates have one second resolution.
        modified = datetime.now(UTC).replace(microsecond=0)
        return cls(body=page, modified=modified)


def _parse_http_date(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _precondition_status(request: Request, modified: datetime) -> int | None:
    """Return 412 / 304 when the conditional headers short-circuit the request."""

    unmodified_since = _parse_http_date(request.headers.get("if-unmodified-since"))
    if unmodified_since is not None and modified > unmodified_since:
        return 412

    modified_since = _parse_http_date(request.headers.get("if-modified-since"))
    if modified_since is not None and modified <= modified_since:
        return 304
    return None


class RouteRegistry(Protocol):
    def register_route(self, path: str, handler: ASGIApp) -> None: ...


class VanityHandler:
    """Serves the index page and one vanity page per repository name."""

    def __init__(
        self,
        *,
        config: VanityConfig,
        templates: TemplateSet,
        renderer: PageRenderer,
        index: RenderedIndex,
        observer: Observer,
    ) -> None:
        self._config = config
        self._templates = templates
        self._renderer = renderer
        self._index = index
        self._observer = observer

    def register(self, host: RouteRegistry) -> None:
        host.register_route("/", self)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        # Registered as a raw ASGI app so every method reaches serve(), and
        # the span stays open until the response and its record are written.
        request = Request(scope, receive)
        with self._observer.span("serve vanity"):
            response = await run_in_threadpool(self.serve, request)
            await response(scope, receive, send)

    def serve(self, request: Request) -> Response:
        info = HTTPRequestInfo.from_request(request)

        if request.method != "GET":
            return self._error(
                RequestEvent(message="GET only", http_request=info, status_code=405),
                MethodNotAllowedError(f"method not allowed: {request.method}"),
                headers={"Allow": "GET"},
            )

        route = resolve_route(request.url.path)
        if isinstance(route, IndexRoute):
            return self._serve_index(request, info)
        return self._serve_repo(route.repo_name, info)

    def _serve_index(self, request: Request, info: HTTPRequestInfo) -> Response:
        headers = {"Last-Modified": format_datetime(self._index.modified, usegmt=True)}
        event = RequestEvent(message="served index page", http_request=info)

        status = _precondition_status(request, self._index.modified)
        if status is not None:
            return ObservedResponse(
                event=replace(event, status_code=status),
                observer=self._observer,
                headers=headers,
            )

        return ObservedResponse(
            self._index.body,
            event=event,
            observer=self._observer,
            media_type=HTML_MEDIA_TYPE,
            headers=headers,
        )

    def _serve_repo(self, repo: str, info: HTTPRequestInfo) -> Response:
        page = PageRequest(
            repo_name=repo,
            source_host=self._config.source,
            serving_host=self._config.host,
        )
        event = RequestEvent(message="served module page", http_request=info, repo=repo)

        # Everything is rendered into memory first so a failure can still
        # become a 500.
        try:
            body = self._templates.render_repo_body(page)
            head = self._templates.render_head(page)
            html = self._renderer.render(body, head=head.decode("utf-8"))
        except VanityError as exc:
            return self._error(
                RequestEvent(
                    message=exc.stage, http_request=info, status_code=500, repo=repo
                ),
                exc,
            )

        return ObservedResponse(
            html,
            event=event,
            observer=self._observer,
            media_type=HTML_MEDIA_TYPE,
        )

    def _error(
        self,
        event: RequestEvent,
        exc: VanityError,
        *,
        headers: dict[str, str] | None = None,
    ) -> Response:
        return ObservedResponse(
            exc.stage,
            event=event.failed(event.message, exc),
            observer=self._observer,
            media_type=TEXT_MEDIA_TYPE,
            headers=headers,
        )
