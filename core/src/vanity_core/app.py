from __future__ import annotations

import logging
from contextlib import AbstractContextManager, asynccontextmanager
from typing import Any, Protocol

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.staticfiles import StaticFiles
from starlette.types import ASGIApp

from vanity_core import __version__
from vanity_core.config import VanityConfig, load_vanity_config
from vanity_core.handler import RenderedIndex, RouteRegistry, VanityHandler
from vanity_core.layout import PageRenderer
from vanity_core.observability import LoggingObserver, Observer, RequestEvent
from vanity_core.template_store import BASE_DIR, TemplateSet

logger = logging.getLogger(__name__)

STATIC_DIR = BASE_DIR / "static"


class ServiceHost(RouteRegistry, Observer, Protocol):
    """What the vanity handler needs from whatever process hosts it."""


class FastAPIHost:
    """ServiceHost backed by a FastAPI app.

    A path ending in ``/`` registers the whole subtree, for every method.
    """

    def __init__(self, app: FastAPI, observer: Observer) -> None:
        self.app = app
        self._observer = observer

    def register_route(self, path: str, handler: ASGIApp) -> None:
        if path.endswith("/"):
            path = path + "{subpath:path}"
        # A plain ASGI endpoint with methods=None matches every method; the
        # handler makes the 405 decision itself.
        self.app.router.add_route(path, handler, methods=None, include_in_schema=False)

    def observe(self, event: RequestEvent) -> None:
        self._observer.observe(event)

    def span(self, name: str) -> AbstractContextManager[Any]:
        return self._observer.span(name)


def create_app(
    config: VanityConfig | None = None,
    *,
    templates: TemplateSet | None = None,
    renderer: PageRenderer | None = None,
    observer: Observer | None = None,
) -> FastAPI:
    """Build the ASGI app.

    Templates are compiled and the index is rendered here, before the app
    exists: any failure raises instead of producing a server that cannot
    render.
    """

    if config is None:
        config = load_vanity_config()
    if templates is None:
        templates = TemplateSet.load()
    if renderer is None:
        renderer = PageRenderer(site=config.host)
    if observer is None:
        observer = LoggingObserver()

    index = RenderedIndex.build(templates, renderer, config)

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        logger.info("vanity starting up: host=%s source=%s", config.host, config.source)
        try:
            yield
        finally:
            logger.info("vanity shutting down")

    # Docs and OpenAPI routes would shadow repository names.
    app = FastAPI(
        title="vanity",
        version=__version__,
        lifespan=_lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.vanity_config = config
    app.state.vanity_index = index

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> PlainTextResponse:
        return PlainTextResponse(
            exc.detail if isinstance(exc.detail, str) else "HTTP error",
            status_code=exc.status_code,
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(request: Request, exc: Exception) -> PlainTextResponse:
        logger.exception("unhandled error serving %s %s", request.method, request.url.path)
        return PlainTextResponse("Internal Server Error", status_code=500)

    # Static assets go first so they win over the catch-all vanity route.
    if STATIC_DIR.is_dir():
        app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")
    else:
        logger.warning("static directory is missing (%s); /static will not be served", STATIC_DIR)

    host = FastAPIHost(app, observer)
    handler = VanityHandler(
        config=config,
        templates=templates,
        renderer=renderer,
        index=index,
        observer=host,
    )
    handler.register(host)

    return app
