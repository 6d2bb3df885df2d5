"""Command-line interface for shellbridge.

Starts the bridge server or checks the health of a running one.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="shellbridge",
        description="Websocket bridge multiplexing remote shell sessions",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/shellbridge.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the bridge server")
    serve_parser.add_argument("--host", type=str, default=None, help="Override the bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Override the listen port")

    health_parser = subparsers.add_parser("health", help="Query a running server's /health")
    health_parser.add_argument(
        "--url", type=str, default=None,
        help="Base HTTP URL of the server (default: derived from server settings)",
    )
    health_parser.add_argument(
        "--timeout", type=float, default=5.0,
        help="Request timeout in seconds",
    )

    return parser.parse_args(argv)


def _serve(settings, args) -> None:
    from shellbridge.bridge.app import create_app
    import uvicorn

    host = args.host or settings.server.host
    port = args.port or settings.server.port
    logger.info("Starting bridge server on %s:%d%s", host, port, settings.server.ws_path)
    app = create_app(settings=settings)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=settings.logging.level.lower(),
    )


def _health(settings, args) -> int:
    """Print the server's health report. Returns the process exit code."""
    import httpx

    base_url = args.url
    if not base_url:
        host = settings.server.host
        if host in ("0.0.0.0", "::"):
            host = "localhost"
        base_url = f"http://{host}:{settings.server.port}"

    try:
        response = httpx.get(f"{base_url.rstrip('/')}/health", timeout=args.timeout)
        response.raise_for_status()
    except httpx.HTTPError as e:
        print(f"Server at {base_url} is not healthy: {e}", file=sys.stderr)
        return 1

    body = response.json()
    print(f"Status:   {body.get('status')}")
    print(f"Sessions: {body.get('sessions')}")
    print(f"Channels: {body.get('channels')}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the shellbridge CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from shellbridge.config.settings import load_settings
    from shellbridge.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        _serve(settings, args)

    elif args.command == "health":
        code = _health(settings, args)
        if code:
            sys.exit(code)


if __name__ == "__main__":
    main()
