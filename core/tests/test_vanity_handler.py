from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient

from vanity_core.app import create_app
from vanity_core.config import VanityConfig
from vanity_core.errors import LayoutRenderError, TemplateRenderError
from vanity_core.layout import PageRenderer
from vanity_core.observability import RequestEvent
from vanity_core.template_store import TemplateSet

GO_IMPORT = "go.seankhliao.com/foo-bar git https://github.com/seankhliao/foo-bar"
EVENT_LOGGER = "vanity_core.vanity"


def _vanity_records(caplog: pytest.LogCaptureFixture) -> list[logging.LogRecord]:
    return [r for r in caplog.records if r.name == EVENT_LOGGER]


class RecordingObserver:
    def __init__(self) -> None:
        self.events: list[RequestEvent] = []
        self.log: list[str] = []

    def observe(self, event: RequestEvent) -> None:
        self.events.append(event)
        self.log.append(f"observe {event.status_code}")

    @contextmanager
    def span(self, name: str):
        self.log.append(f"start {name}")
        try:
            yield
        finally:
            self.log.append(f"end {name}")


def test_repo_page_has_go_import(client: TestClient) -> None:
    r = client.get("/foo-bar")
    assert r.status_code == 200
    assert r.headers["content-type"] == "text/html; charset=utf-8"
    assert GO_IMPORT in r.text
    assert r.text.count(GO_IMPORT) == 1
    assert "<h1>foo-bar</h1>" in r.text


def test_repo_page_uses_first_segment_only(client: TestClient) -> None:
    r = client.get("/foo-bar/sub/path")
    assert r.status_code == 200
    assert GO_IMPORT in r.text
    assert "sub/path" not in r.text

    assert client.get("/foo-bar").content == r.content


def test_repo_page_uses_configured_host_and_source() -> None:
    config = VanityConfig(host="go.example.com", source="git.example.com/team")
    client = TestClient(create_app(config))

    r = client.get("/tool")
    assert r.status_code == 200
    assert "go.example.com/tool git https://git.example.com/team/tool" in r.text
    assert "seankhliao" not in r.text


def test_index_is_prerendered_and_stable(client: TestClient) -> None:
    first = client.get("/")
    second = client.get("/")

    assert first.status_code == 200
    assert first.headers["content-type"] == "text/html; charset=utf-8"
    assert first.content == second.content
    assert first.headers["last-modified"] == second.headers["last-modified"]
    assert "<h1>go.seankhliao.com</h1>" in first.text
    assert 'name="go-import"' not in first.text


def test_index_conditional_get(client: TestClient) -> None:
    last_modified = client.get("/").headers["last-modified"]

    not_modified = client.get("/", headers={"If-Modified-Since": last_modified})
    assert not_modified.status_code == 304
    assert not_modified.content == b""
    assert not_modified.headers["last-modified"] == last_modified

    stale = client.get("/", headers={"If-Modified-Since": "Mon, 01 Jan 2001 00:00:00 GMT"})
    assert stale.status_code == 200
    assert stale.content

    garbage = client.get("/", headers={"If-Modified-Since": "yesterday-ish"})
    assert garbage.status_code == 200

    failed = client.get("/", headers={"If-Unmodified-Since": "Mon, 01 Jan 2001 00:00:00 GMT"})
    assert failed.status_code == 412


@pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"])
@pytest.mark.parametrize("path", ["/", "/foo-bar", "/foo-bar/sub"])
def test_non_get_is_method_not_allowed(client: TestClient, method: str, path: str) -> None:
    r = client.request(method, path)
    assert r.status_code == 405
    assert r.headers["allow"] == "GET"
    assert r.headers["content-type"].startswith("text/plain")
    assert "<html" not in r.text
    if method != "HEAD":
        assert r.text == "GET only"


def test_repo_name_is_escaped(client: TestClient) -> None:
    r = client.get("/%3Cscript%3Ealert(1)%3C%2Fscript%3E")
    assert r.status_code == 200
    assert "<script>" not in r.text
    assert "&lt;script&gt;alert(1)" in r.text


def test_repo_name_cannot_break_out_of_attribute(client: TestClient) -> None:
    r = client.get('/x%22%20onload=%22alert(1)')
    assert r.status_code == 200
    assert 'onload="alert(1)' not in r.text
    assert "&#34; onload=&#34;alert(1)" in r.text


def test_repo_name_cannot_inject_markdown_links(client: TestClient) -> None:
    r = client.get("/[x](javascript:alert(1))")
    assert r.status_code == 200
    assert 'href="javascript' not in r.text
    assert "<h1>[x](javascript:alert(1))</h1>" in r.text
    assert "<title>[x](javascript:alert(1))</title>" in r.text


def test_repo_name_cannot_inject_markdown_emphasis(client: TestClient) -> None:
    r = client.get("/*boom*")
    assert r.status_code == 200
    assert "<em>boom</em>" not in r.text
    assert "<h1>*boom*</h1>" in r.text
    assert "go.seankhliao.com/*boom* git https://github.com/seankhliao/*boom*" in r.text


def test_non_get_reaches_handler_with_one_record(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO)

    for method in ("POST", "PUT", "DELETE", "PATCH", "OPTIONS"):
        client.request(method, "/foo-bar")

    records = _vanity_records(caplog)
    assert [r.http_request["method"] for r in records] == [
        "POST",
        "PUT",
        "DELETE",
        "PATCH",
        "OPTIONS",
    ]
    assert all(r.status_code == 405 and r.getMessage() == "GET only" for r in records)


def test_template_failure_returns_500_and_logs_once(
    config: VanityConfig, caplog: pytest.LogCaptureFixture
) -> None:
    templates = TemplateSet.from_sources(index="# index", repo="{{ nope }}", head="")
    client = TestClient(create_app(config, templates=templates))
    caplog.set_level(logging.INFO)

    r = client.get("/foo-bar")
    assert r.status_code == 500
    assert r.text == "render repo"
    assert "<html" not in r.text

    records = _vanity_records(caplog)
    assert len(records) == 1
    assert records[0].levelno == logging.ERROR
    assert records[0].status_code == 500
    assert records[0].vanity == {"repo": "foo-bar"}
    assert "nope" in records[0].error


def test_head_failure_skips_layout(config: VanityConfig) -> None:
    calls: list[str] = []

    class CountingRenderer(PageRenderer):
        def render(self, body: bytes, *, head: str = "") -> bytes:
            calls.append(head)
            return super().render(body, head=head)

    templates = TemplateSet.from_sources(index="# index", repo="# {{ repo }}", head="{{ nope }}")
    client = TestClient(
        create_app(config, templates=templates, renderer=CountingRenderer(site=config.host))
    )
    assert calls == [""]

    r = client.get("/foo-bar")
    assert r.status_code == 500
    assert r.text == "render head"
    # Only the index was rendered through the layout, at startup.
    assert calls == [""]


def test_layout_failure_returns_500(config: VanityConfig) -> None:
    class FailingRenderer(PageRenderer):
        def render(self, body: bytes, *, head: str = "") -> bytes:
            if head:
                raise LayoutRenderError("broken layout")
            return super().render(body, head=head)

    client = TestClient(create_app(config, renderer=FailingRenderer(site=config.host)))

    assert client.get("/").status_code == 200
    r = client.get("/foo-bar")
    assert r.status_code == 500
    assert r.text == "render html"
    assert "broken layout" not in r.text


def test_index_failure_is_fatal_at_startup(config: VanityConfig) -> None:
    templates = TemplateSet.from_sources(index="{{ nope }}", repo="", head="")
    with pytest.raises(TemplateRenderError):
        create_app(config, templates=templates)


def test_one_record_per_request(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    client.get("/", headers={"Referer": "https://example.com/", "X-Forwarded-For": "10.0.0.1"})
    client.get("/foo-bar/x?go-get=1", headers={"User-Agent": "Go-http-client/1.1"})
    client.post("/foo-bar")

    records = _vanity_records(caplog)
    assert [r.getMessage() for r in records] == [
        "served index page",
        "served module page",
        "GET only",
    ]
    assert [r.levelno for r in records] == [logging.INFO, logging.INFO, logging.ERROR]

    index, repo, rejected = records
    assert index.http_request["method"] == "GET"
    assert index.http_request["url"] == "/"
    assert index.http_request["referrer"] == "https://example.com/"
    assert index.http_request["x_forwarded_for"] == "10.0.0.1"
    assert index.http_request["proto"] == "HTTP/1.1"
    assert index.http_request["remote_address"].startswith("testclient")
    assert not hasattr(index, "vanity")

    assert repo.http_request["url"] == "/foo-bar/x?go-get=1"
    assert repo.http_request["user_agent"] == "Go-http-client/1.1"
    assert repo.vanity == {"repo": "foo-bar"}
    assert repo.status_code == 200

    assert rejected.http_request["method"] == "POST"
    assert rejected.status_code == 405


def test_span_brackets_each_request(config: VanityConfig) -> None:
    observer = RecordingObserver()
    client = TestClient(create_app(config, observer=observer))

    client.get("/foo-bar")
    client.delete("/foo-bar")

    # Each record is emitted inside its request's span.
    assert observer.log == [
        "start serve vanity",
        "observe 200",
        "end serve vanity",
        "start serve vanity",
        "observe 405",
        "end serve vanity",
    ]
    assert [e.status_code for e in observer.events] == [200, 405]
    assert observer.events[0].repo == "foo-bar"
    assert observer.events[1].repo is None


def test_concurrent_requests_do_not_share_state(client: TestClient) -> None:
    repos = [f"repo-{i}" for i in range(16)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        pages = list(pool.map(lambda repo: client.get(f"/{repo}").text, repos))

    for repo, page in zip(repos, pages, strict=True):
        assert f"go.seankhliao.com/{repo} git https://github.com/seankhliao/{repo}" in page
        others = [o for o in repos if o != repo]
        assert not any(f"/{other} git" in page for other in others)


def test_static_assets_are_served(client: TestClient) -> None:
    css = client.get("/static/base.css")
    assert css.status_code == 200
    assert css.headers["content-type"].startswith("text/css")

    missing = client.get("/static/nope.css")
    assert missing.status_code == 404
    assert missing.headers["content-type"].startswith("text/plain")


def test_docs_routes_are_repository_pages(client: TestClient) -> None:
    r = client.get("/docs")
    assert r.status_code == 200
    assert "go.seankhliao.com/docs git https://github.com/seankhliao/docs" in r.text
