from __future__ import annotations

from collections.abc import Mapping

from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from vanity_core.errors import WriteError
from vanity_core.observability import Observer, RequestEvent


class ObservedResponse(Response):
    """A fully buffered response that reports its request event once sent.

    If the write fails the status is already on the wire, so the failure is
    only reported in place of the original event.
    """

    def __init__(
        self,
        content: bytes | str = b"",
        *,
        event: RequestEvent,
        observer: Observer,
        media_type: str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            content=content,
            status_code=event.status_code,
            headers=headers,
            media_type=media_type,
        )
        self.event = event
        self._observer = observer

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except OSError as exc:
            self._observer.observe(self.event.failed("write response", WriteError(str(exc))))
            return
        self._observer.observe(self.event)
