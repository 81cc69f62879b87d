"""An MCP server that exposes the SSH tools over HTTP or stdio."""

from __future__ import annotations

import json
import logging
import sys
import uuid
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Iterable, Mapping, Optional, TextIO
from urllib.parse import urlsplit

from .security import SecurityConfig, SecurityManager
from .session import SessionManager
from .tools import Tool, ToolError, get_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "ssh-mcp"
SERVER_VERSION = "0.1.0"
MCP_PATH = "/mcp"
SESSION_HEADER = "Mcp-Session-Id"

LATEST_PROTOCOL_VERSION = "2025-03-26"
SUPPORTED_PROTOCOL_VERSIONS = (LATEST_PROTOCOL_VERSION, "2024-11-05")

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


@dataclass
class ServerConfig:
    """Server settings; durations are in seconds."""

    port: int = 8081
    session_expiry: float = 30 * 60.0
    cleanup_interval: float = 5 * 60.0
    rate_limit: float = 0.0
    logging_enabled: bool = True


def default_config() -> ServerConfig:
    """Return the default server configuration."""
    return ServerConfig()


class _RpcError(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def _error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


class MCPServer:
    """Answers MCP JSON-RPC messages using a fixed set of tools."""

    def __init__(
        self,
        name: str,
        version: str,
        tools: Iterable[Tool],
        logging_enabled: bool = False,
    ) -> None:
        self.name = name
        self.version = version
        self.tools = {tool.name: tool for tool in tools}
        self.logging_enabled = logging_enabled
        self._methods: dict[str, Callable[[Mapping[str, Any]], Any]] = {
            "initialize": self._initialize,
            "ping": lambda params: {},
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
            "logging/setLevel": lambda params: {},
        }

    def _initialize(self, params: Mapping[str, Any]) -> dict[str, Any]:
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        return {
            "protocolVersion": version,
            "capabilities": {"tools": {"listChanged": True}, "logging": {}},
            "serverInfo": {"name": self.name, "version": self.version},
        }

    def _list_tools(self, params: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "tools": [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "inputSchema": tool.input_schema(),
                }
                for tool in self.tools.values()
            ]
        }

    def _call_tool(self, params: Mapping[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str):
            raise _RpcError(INVALID_PARAMS, "tool name is required")
        tool = self.tools.get(name)
        if tool is None:
            raise _RpcError(INVALID_PARAMS, f"tool '{name}' not found")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, Mapping):
            raise _RpcError(INVALID_PARAMS, "tool arguments must be an object")
        try:
            return tool(arguments).to_json()
        except ToolError as exc:
            raise _RpcError(INTERNAL_ERROR, str(exc)) from exc

    def handle_message(self, message: Any) -> Optional[Any]:
        """Handle one JSON-RPC message or batch; return the reply, or None for notifications."""
        if isinstance(message, list):
            replies = [reply for item in message if (reply := self.handle_message(item)) is not None]
            return replies or None
        if not isinstance(message, dict):
            return _error(None, INVALID_REQUEST, "invalid request")

        request_id = message.get("id")
        is_notification = "id" not in message
        method = message.get("method")
        if method is None and not is_notification and ("result" in message or "error" in message):
            return None
        if not isinstance(method, str) or message.get("jsonrpc") != "2.0":
            return None if is_notification else _error(request_id, INVALID_REQUEST, "invalid request")

        if is_notification:
            if self.logging_enabled:
                logger.info("Notification: %s", method)
            return None

        params = message.get("params") or {}
        if self.logging_enabled:
            logger.info("Request: %s, %s, %s", method, request_id, params)
        try:
            handler = self._methods.get(method)
            if handler is None:
                raise _RpcError(METHOD_NOT_FOUND, f"method '{method}' not found")
            if not isinstance(params, Mapping):
                raise _RpcError(INVALID_PARAMS, "params must be an object")
            result = handler(params)
        except _RpcError as exc:
            if self.logging_enabled:
                logger.info("Error: %s, %s, %s, %s", method, request_id, params, exc.message)
            return _error(request_id, exc.code, exc.message)
        except Exception as exc:  # a failing handler must not take the server down
            logger.exception("Unexpected failure handling %s", method)
            return _error(request_id, INTERNAL_ERROR, str(exc))
        if self.logging_enabled:
            logger.info("Success: %s, %s, %s, %s", method, request_id, params, result)
        return {"jsonrpc": "2.0", "id": request_id, "result": result}


def setup_server(config: Optional[ServerConfig] = None) -> tuple[MCPServer, SessionManager]:
    """Build the MCP server with all SSH tools and start the cleanup routines."""
    if config is None:
        config = default_config()
    session_manager = SessionManager(config.session_expiry)
    session_manager.start_cleanup_routine(config.cleanup_interval)

    security_manager = SecurityManager(
        SecurityConfig(logging_enabled=config.logging_enabled, rate_limit=config.rate_limit)
    )
    security_manager.start_cleanup_routine(config.cleanup_interval, config.session_expiry)

    tools = get_tools(session_manager, security_manager)
    server = MCPServer(SERVER_NAME, SERVER_VERSION, tools, config.logging_enabled)
    return server, session_manager


def make_http_server(mcp_server: MCPServer, port: int) -> ThreadingHTTPServer:
    """Bind an HTTP server answering MCP POST requests at /mcp on ``port``."""

    class Handler(BaseHTTPRequestHandler):
        server_version = "ssh-mcp"

        def _send_json(self, status: int, payload: Any, extra: Mapping[str, str] = {}) -> None:
            body = json.dumps(payload).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            for key, value in extra.items():
                self.send_header(key, value)
            self.end_headers()
            self.wfile.write(body)

        def _send_empty(self, status: int, extra: Mapping[str, str] = {}) -> None:
            self.send_response(status)
            self.send_header("Content-Length", "0")
            for key, value in extra.items():
                self.send_header(key, value)
            self.end_headers()

        def do_POST(self) -> None:
            if urlsplit(self.path).path != MCP_PATH:
                self._send_empty(404)
                return
            length = int(self.headers.get("Content-Length") or 0)
            raw = self.rfile.read(length)
            try:
                message = json.loads(raw)
            except ValueError:
                self._send_json(400, _error(None, PARSE_ERROR, "parse error"))
                return
            extra: dict[str, str] = {}
            if isinstance(message, dict) and message.get("method") == "initialize":
                extra[SESSION_HEADER] = str(uuid.uuid4())
            reply = mcp_server.handle_message(message)
            if reply is None:
                self._send_empty(202, extra)
            else:
                self._send_json(200, reply, extra)

        def _not_allowed(self) -> None:
            self._send_empty(405, {"Allow": "POST"})

        do_GET = _not_allowed
        do_DELETE = _not_allowed
        do_PUT = _not_allowed

        def log_message(self, format: str, *args: Any) -> None:
            logger.debug("%s - %s", self.address_string(), format % args)

    return ThreadingHTTPServer(("", port), Handler)


def start_http_server(mcp_server: MCPServer, port: int) -> None:
    """Serve MCP over HTTP on ``port`` until interrupted."""
    with make_http_server(mcp_server, port) as http_server:
        logger.info("HTTP server listening on :%d%s", port, MCP_PATH)
        http_server.serve_forever()


def start_stdio_server(
    mcp_server: MCPServer,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> None:
    """Serve newline-delimited JSON-RPC messages until the input ends."""
    source = stdin if stdin is not None else sys.stdin
    sink = stdout if stdout is not None else sys.stdout
    logger.info("Starting stdio server")
    for line in source:
        line = line.strip()
        if not line:
            continue
        try:
            message = json.loads(line)
        except ValueError:
            reply: Any = _error(None, PARSE_ERROR, "parse error")
        else:
            reply = mcp_server.handle_message(message)
        if reply is not None:
            sink.write(json.dumps(reply) + "\n")
            sink.flush()