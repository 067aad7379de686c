"""
InsForge MCP command line entry point.

Usage:
    insforge-mcp --api_key <KEY> [--api_base_url <URL>]     # stdio transport
    insforge-mcp http [--host 127.0.0.1] [--port 3000]      # Streamable HTTP

stdout belongs to the MCP protocol in stdio mode, so all operator output
goes to stderr (and optionally INSFORGE_MCP_LOG_FILE).
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from insforge_mcp.core.config import LoggingConfig, McpConfig
from insforge_mcp.core.errors import InsForgeError
from insforge_mcp.version import __version__

logger = logging.getLogger("InsForge")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(log_config: LoggingConfig) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_config.file:
        handlers.append(logging.FileHandler(log_config.file, mode="a", encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, log_config.level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def cmd_stdio(config: McpConfig) -> int:
    from insforge_mcp.mcp.registry import ToolRegistry
    from insforge_mcp.mcp.server import StdioServer
    from insforge_mcp.mcp.session import McpSession

    registry = ToolRegistry(config)
    try:
        summary = registry.register_all()
    except (InsForgeError, ValueError) as exc:
        logger.error("Failed to start InsForge MCP server: %s", exc)
        registry.close()
        return 1

    logger.info("InsForge MCP server started")
    if summary.api_key:
        logger.info("API Key: Configured")
    else:
        logger.info("API Key: Not configured (will require apiKey in tool calls)")
    logger.info("API Base URL: %s", summary.api_base_url)
    logger.info("Tools registered: %d", summary.tool_count)

    StdioServer(McpSession(registry, session_id="stdio")).serve_forever()
    return 0


def cmd_http(config: McpConfig, args: argparse.Namespace) -> int:
    from insforge_mcp.http.app import run_server

    http = config.http.model_copy(
        update={k: v for k, v in (("host", args.host), ("port", args.port)) if v is not None}
    )
    run_server(config.model_copy(update={"http": http}))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="insforge-mcp",
        description="Model Context Protocol server for InsForge backends.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  insforge-mcp --api_key ik_xxx --api_base_url http://localhost:7130\n"
               "  insforge-mcp http --port 3000\n",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--api_key", default=None, help="InsForge API key (default: API_KEY env var)")
    parser.add_argument(
        "--api_base_url",
        default=None,
        help="InsForge backend URL (default: API_BASE_URL env var or http://localhost:7130)",
    )
    subparsers = parser.add_subparsers(dest="command")

    http = subparsers.add_parser(
        "http",
        help="Serve MCP over Streamable HTTP.",
        description=(
            "Runs the Streamable HTTP transport. Each client initializes its own\n"
            "session with 'Authorization: Bearer <API_KEY>' and 'X-Base-URL' headers."
        ),
    )
    http.add_argument("--host", default=None, help="Host to bind to (default: 127.0.0.1)")
    http.add_argument("--port", type=int, default=None, help="Port to bind to (default: 3000)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = McpConfig.from_env().with_overrides(
        api_key=args.api_key,
        api_base_url=args.api_base_url,
    )
    configure_logging(config.log)

    if args.command == "http":
        return cmd_http(config, args)
    return cmd_stdio(config)


if __name__ == "__main__":
    raise SystemExit(main())
