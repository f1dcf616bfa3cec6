from __future__ import annotations

import json
import logging
from contextlib import AbstractContextManager
from dataclasses import asdict, dataclass, replace
from logging.handlers import RotatingFileHandler
from typing import Any, Protocol

from opentelemetry import trace
from starlette.requests import Request

from vanity_core.config import LoggingConfig

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# LogRecord attributes rendered by StructuredFormatter.
STRUCTURED_FIELDS = ("http_request", "vanity", "status_code", "error")


@dataclass(frozen=True)
class HTTPRequestInfo:
    method: str
    url: str
    proto: str
    user_agent: str
    remote_address: str
    referrer: str
    x_forwarded_for: str
    forwarded: str

    @classmethod
    def from_request(cls, request: Request) -> HTTPRequestInfo:
        url = request.url.path
        if request.url.query:
            url = f"{url}?{request.url.query}"
        client = request.client
        return cls(
            method=request.method,
            url=url,
            proto=f"HTTP/{request.scope.get('http_version', '1.1')}",
            user_agent=request.headers.get("user-agent", ""),
            remote_address=f"{client.host}:{client.port}" if client else "",
            referrer=request.headers.get("referer", ""),
            x_forwarded_for=request.headers.get("x-forwarded-for", ""),
            forwarded=request.headers.get("forwarded", ""),
        )


@dataclass(frozen=True)
class RequestEvent:
    """The single observability record emitted for one request."""

    message: str
    http_request: HTTPRequestInfo
    level: int = logging.INFO
    status_code: int = 200
    repo: str | None = None
    error: BaseException | None = None

    def failed(self, message: str, error: BaseException) -> RequestEvent:
        return replace(self, message=message, level=logging.ERROR, error=error)

    def fields(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "http_request": asdict(self.http_request),
            "status_code": self.status_code,
        }
        if self.repo is not None:
            out["vanity"] = {"repo": self.repo}
        if self.error is not None:
            out["error"] = str(self.error)
        return out


class Observer(Protocol):
    def observe(self, event: RequestEvent) -> None: ...

    def span(self, name: str) -> AbstractContextManager[Any]: ...


class LoggingObserver:
    """Logs request events and opens OpenTelemetry spans for a component."""

    def __init__(self, component: str = "vanity") -> None:
        self.logger = logging.getLogger(f"vanity_core.{component}")
        self._tracer = trace.get_tracer(f"vanity_core.{component}")

    def observe(self, event: RequestEvent) -> None:
        self.logger.log(event.level, event.message, extra=event.fields())

    def span(self, name: str) -> AbstractContextManager[Any]:
        return self._tracer.start_as_current_span(name)


class StructuredFormatter(logging.Formatter):
    """Standard log line followed by the record's structured fields as JSON."""

    def __init__(self, fmt: str = LOG_FORMAT) -> None:
        super().__init__(fmt)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = {k: getattr(record, k) for k in STRUCTURED_FIELDS if hasattr(record, k)}
        if not fields:
            return line
        return f"{line} {json.dumps(fields, sort_keys=True, default=str)}"


def configure_logging(config: LoggingConfig) -> None:
    formatter = StructuredFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.file:
        handlers.append(
            RotatingFileHandler(
                config.file,
                maxBytes=config.max_size_mb * 1024 * 1024,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
        )

    root = logging.getLogger()
    root.setLevel(config.level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
