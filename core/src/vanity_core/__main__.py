from __future__ import annotations

import argparse
import logging
from typing import Any

import uvicorn

from vanity_core.app import create_app
from vanity_core.config import load_vanity_config
from vanity_core.errors import VanityError
from vanity_core.observability import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vanity",
        description="Serve go-import / go-source pages for a vanity module path.",
    )
    parser.add_argument(
        "--vanity.host", dest="host", default=None, help="host this server runs on"
    )
    parser.add_argument(
        "--vanity.source", dest="source", default=None, help="where the code is hosted"
    )
    parser.add_argument("--bind", default=None, help="address to listen on")
    parser.add_argument("--port", type=int, default=None, help="port to listen on")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--log-file", default=None, help="also log to this (rotated) file")
    return parser


def overrides_from_args(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "host": args.host,
        "source": args.source,
        "network.bind_host": args.bind,
        "network.port": args.port,
        "logging.level": args.log_level,
        "logging.file": args.log_file,
    }


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    config = load_vanity_config(overrides=overrides_from_args(args))
    configure_logging(config.logging)

    try:
        app = create_app(config)
    except VanityError as exc:
        logger.error("startup failed: %s", exc)
        return 1

    # The vanity handler already logs one record per request.
    uvicorn.run(
        app,
        host=config.network.bind_host,
        port=config.network.port,
        access_log=False,
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
