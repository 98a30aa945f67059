from __future__ import annotations

import argparse
import logging
from typing import List, Optional

import uvicorn

from .api import create_app
from .common import load_config
from .logging_utils import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve the address book REST API.")
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config.")
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--mongo-uri", type=str, default=None)
    parser.add_argument("--mongo-db", type=str, default=None)
    parser.add_argument(
        "--storage-backend", type=str, choices=["mongo", "memory"], default=None
    )
    parser.add_argument(
        "--phone-policy", type=str, choices=["generic", "fr", "phonenumbers"], default=None
    )
    parser.add_argument("--phone-region", type=str, default=None)
    parser.add_argument("--email-policy", type=str, choices=["shape", "rfc"], default=None)
    parser.add_argument(
        "--export-bom",
        dest="export_bom",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Prefix exported CSV with a UTF-8 byte-order mark (default: off).",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Override logging level")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args)
    level = configure_logging(config, level_override=args.log_level)

    app = create_app(config)
    logger.info(
        "Serving on %s:%d (storage: %s)",
        config.server.host,
        config.server.port,
        config.storage.backend,
    )
    uvicorn.run(app, host=config.server.host, port=config.server.port, log_level=level)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
