from __future__ import annotations


class VanityError(Exception):
    """Base error for a single request or startup step.

    ``stage`` is the only part of the error that is ever shown to clients.
    """

    stage: str = "internal error"

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class TemplateCompileError(VanityError):
    stage = "compile templates"


class MethodNotAllowedError(VanityError):
    stage = "GET only"


class TemplateRenderError(VanityError):
    stage = "render template"


class LayoutRenderError(VanityError):
    stage = "render html"


class WriteError(VanityError):
    stage = "write response"
