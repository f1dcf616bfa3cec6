from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class IndexRoute:
    pass


@dataclass(frozen=True)
class RepositoryRoute:
    repo_name: str


def resolve_route(path: str) -> IndexRoute | RepositoryRoute:
    """Map a URL path to the index page or a repository page.

    Only one leading slash is stripped and only the first segment is kept;
    nothing is validated or escaped here.
    """

    trimmed = path.removeprefix("/")
    if trimmed == "":
        return IndexRoute()
    repo_name, _, _ = trimmed.partition("/")
    return RepositoryRoute(repo_name=repo_name)
