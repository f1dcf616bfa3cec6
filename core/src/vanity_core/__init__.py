from vanity_core.config import VanityConfig, load_vanity_config
from vanity_core.routing import IndexRoute, RepositoryRoute, resolve_route
from vanity_core.template_store import PageRequest, TemplateSet

__version__ = "0.1.0"

__all__ = [
    "IndexRoute",
    "PageRequest",
    "RepositoryRoute",
    "TemplateSet",
    "VanityConfig",
    "__version__",
    "load_vanity_config",
    "resolve_route",
]
