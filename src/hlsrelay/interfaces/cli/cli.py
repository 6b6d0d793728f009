"""``hlsrelay`` console script: parse flags, load config once, serve."""

from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog
import uvicorn

from hlsrelay.infrastructure.config import load_config
from hlsrelay.infrastructure.logging.setup import configure_logging
from hlsrelay.interfaces.app import create_app

log = structlog.get_logger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000

# argparse dest -> flat config key
_OVERRIDE_FLAGS = {
    "public_url": "public_url",
    "log_level": "log_level",
    "log_format": "log_format",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hlsrelay", description="HLS reverse proxy with playlist rewriting."
    )

    bind = parser.add_argument_group("bind address")
    bind.add_argument(
        "--host", help=f"Interface to bind (env HOST, default {DEFAULT_HOST})."
    )
    bind.add_argument(
        "--port", type=int, help=f"TCP port (env PORT, default {DEFAULT_PORT})."
    )

    sources = parser.add_argument_group("config sources")
    sources.add_argument(
        "--config", type=Path, metavar="PATH", help="YAML config file."
    )
    sources.add_argument("--dotenv", type=Path, metavar="PATH", help=".env file.")

    overrides = parser.add_argument_group("overrides (beat config and env)")
    overrides.add_argument(
        "--public-url",
        metavar="URL",
        help="Base URL written into rewritten playlists.",
    )
    overrides.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"]
    )
    overrides.add_argument("--log-format", choices=["json", "console"])
    return parser


def _cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        key: getattr(args, dest)
        for dest, key in _OVERRIDE_FLAGS.items()
        if getattr(args, dest)
    }


def _bind_address(args: argparse.Namespace) -> tuple[str, int]:
    host = args.host or os.getenv("HOST") or DEFAULT_HOST
    port = args.port or int(os.getenv("PORT") or DEFAULT_PORT)
    return host, port


def start(argv: Iterable[str] | None = None) -> None:
    args = build_parser().parse_args(list(sys.argv[1:] if argv is None else argv))
    host, port = _bind_address(args)

    config = load_config(
        config_path=args.config,
        dotenv_path=args.dotenv,
        cli_overrides=_cli_overrides(args),
    )
    configure_logging(config)
    log.info("server_starting", host=host, port=port, public_url=config.public_url)

    # configure_logging owns the root handlers
    uvicorn.run(
        create_app(config),
        host=host,
        port=port,
        log_config=None,
        proxy_headers=True,
    )


if __name__ == "__main__":
    raise SystemExit(start())
