"""Mechabus gateway entry point.

Usage:
    python -m mechabus [--config CONFIG_PATH] [--port PORT] [--simulate] [--debug]
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

import uvicorn

from .addresses import AddressMapError
from .auth import hash_password
from .config import GatewayConfig
from .server import create_app


def main() -> None:
    parser = argparse.ArgumentParser(description="Mechabus gateway")
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to config.json (default: /etc/mechabus/config.json if present)",
    )
    parser.add_argument("--host", default=None, help="Bind address (overrides config)")
    parser.add_argument("--port", type=int, default=None, help="Listen port (overrides config)")
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Use in-memory switches instead of contacting controllers",
    )
    parser.add_argument(
        "--hash-password",
        metavar="PASSWORD",
        default=None,
        help="Print a bcrypt hash for PASSWORD and exit",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.hash_password is not None:
        print(hash_password(args.hash_password))
        return

    # Logging
    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    log = logging.getLogger(__name__)

    config_path = args.config
    if config_path is None and Path("/etc/mechabus/config.json").exists():
        config_path = "/etc/mechabus/config.json"

    if config_path:
        config = GatewayConfig.load(config_path)
        log.info("Loaded config from %s", config_path)
    else:
        config = GatewayConfig()
        log.warning("No config found — using defaults")
    config.apply_env()

    # CLI overrides
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.simulate:
        config.simulate = True

    try:
        app = create_app(config)
    except AddressMapError as exc:
        log.critical("Cannot start: %s", exc)
        raise SystemExit(1)

    uvicorn.run(app, host=config.host, port=config.port, log_level="debug" if args.debug else "info")


if __name__ == "__main__":
    main()
