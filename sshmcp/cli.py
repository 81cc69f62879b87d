"""Command-line entry point that starts the SSH MCP server."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from .server import default_config, setup_server, start_http_server, start_stdio_server

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse the command line; the transport defaults to http."""
    parser = argparse.ArgumentParser(prog="ssh-mcp", description="SSH tools served over MCP.")
    parser.add_argument(
        "-t",
        "-transport",
        "--transport",
        dest="transport",
        default="http",
        help="Transport type (stdio or http)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Start the server on the chosen transport and return an exit status."""
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s", stream=sys.stderr)

    config = default_config()
    mcp_server, _ = setup_server(config)
    logger.info("Starting SSH-MCP server...")

    try:
        if args.transport == "http":
            logger.info("Using HTTP transport on port %d", config.port)
            start_http_server(mcp_server, config.port)
        else:
            logger.info("Using stdio transport")
            start_stdio_server(mcp_server)
    except KeyboardInterrupt:
        return 0
    except OSError as exc:
        logger.error("Server error: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())