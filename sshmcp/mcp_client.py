"""A small MCP client for calling the SSH tools over streamable HTTP."""

from __future__ import annotations

import itertools
import json
import urllib.error
import urllib.request
from typing import Any, Mapping, Optional

from .server import LATEST_PROTOCOL_VERSION, SESSION_HEADER

CLIENT_NAME = "SSH-MCP Client"
CLIENT_VERSION = "1.0.0"
REQUEST_TIMEOUT = 60.0


class MCPClientError(Exception):
    """Raised when the server cannot be reached or answers with an error."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


def _first_text(result: Mapping[str, Any]) -> Optional[str]:
    content = result.get("content") or []
    if content and isinstance(content[0], Mapping) and content[0].get("type") == "text":
        text = content[0].get("text")
        if isinstance(text, str):
            return text
    return None


class MCPClient:
    """Connects to an MCP endpoint, initialises, and calls the SSH tools."""

    timeout: float = REQUEST_TIMEOUT

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url
        self.session_id: Optional[str] = None
        self._ids = itertools.count(1)
        result = self._request(
            "initialize",
            {
                "protocolVersion": LATEST_PROTOCOL_VERSION,
                "clientInfo": {"name": CLIENT_NAME, "version": CLIENT_VERSION},
                "capabilities": {},
            },
        )
        self.server_info: dict[str, Any] = result.get("serverInfo", {})
        self.protocol_version: Optional[str] = result.get("protocolVersion")
        self._post({"jsonrpc": "2.0", "method": "notifications/initialized"})

    def _post(self, message: Mapping[str, Any]) -> tuple[str, bytes]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        request = urllib.request.Request(
            self.base_url, data=json.dumps(message).encode("utf-8"), headers=headers, method="POST"
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                session = response.headers.get(SESSION_HEADER)
                if session:
                    self.session_id = session
                return response.headers.get("Content-Type", ""), response.read()
        except urllib.error.HTTPError as exc:
            body = exc.read()
            try:
                error = json.loads(body)["error"]
            except (ValueError, KeyError, TypeError):
                raise MCPClientError(f"HTTP error {exc.code}") from exc
            raise MCPClientError(error.get("message", ""), error.get("code")) from exc
        except (urllib.error.URLError, OSError) as exc:
            raise MCPClientError(f"failed to reach MCP server: {exc}") from exc

    @staticmethod
    def _messages(content_type: str, body: bytes) -> list[Any]:
        if "text/event-stream" in content_type:
            messages = []
            for line in body.decode("utf-8").splitlines():
                if line.startswith("data:"):
                    messages.append(json.loads(line[5:].strip()))
            return messages
        decoded = json.loads(body)
        return decoded if isinstance(decoded, list) else [decoded]

    def _request(self, method: str, params: Mapping[str, Any]) -> dict[str, Any]:
        request_id = next(self._ids)
        content_type, body = self._post(
            {"jsonrpc": "2.0", "id": request_id, "method": method, "params": dict(params)}
        )
        try:
            messages = self._messages(content_type, body)
        except ValueError as exc:
            raise MCPClientError(f"invalid response from MCP server: {exc}") from exc
        for message in messages:
            if isinstance(message, Mapping) and message.get("id") == request_id:
                if "error" in message:
                    error = message["error"]
                    raise MCPClientError(error.get("message", ""), error.get("code"))
                return message.get("result") or {}
        raise MCPClientError(f"no response to {method}")

    def call_tool(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
        """Call a tool and return its result."""
        return self._request("tools/call", {"name": name, "arguments": dict(arguments or {})})

    def _call_for_text(self, name: str, arguments: Mapping[str, Any], what: str) -> str:
        text = _first_text(self.call_tool(name, arguments))
        if text is None:
            raise MCPClientError(f"failed to get {what} from response")
        return text

    def ssh_connect(self, host: str, port: int, username: str, password: str) -> str:
        """Open an SSH connection and return its session identifier."""
        result = self.call_tool(
            "ssh_connect",
            {
                "host": host,
                "port": port,
                "username": username,
                "password": password,
                "timeout": 10,
            },
        )
        text = _first_text(result) or ""
        parts = text.split("Session ID: ")
        session_id = parts[1].strip() if len(parts) > 1 else ""
        if not session_id:
            raise MCPClientError("failed to get session ID from response")
        return session_id

    def ssh_execute_command(self, session_id: str, command: str) -> str:
        """Run a command in the session and return its output."""
        return self._call_for_text(
            "ssh_execute",
            {"sessionId": session_id, "command": command, "timeout": 30},
            "command output",
        )

    def ssh_upload_file(self, session_id: str, local_path: str, remote_path: str) -> None:
        """Copy a local file to the server."""
        self.call_tool(
            "ssh_upload_file",
            {
                "sessionId": session_id,
                "source": local_path,
                "destination": remote_path,
                "direction": "upload",
            },
        )

    def ssh_download_file(self, session_id: str, remote_path: str, local_path: str) -> None:
        """Copy a remote file to the local machine."""
        self.call_tool(
            "ssh_download_file",
            {
                "sessionId": session_id,
                "source": remote_path,
                "destination": local_path,
                "direction": "download",
            },
        )

    def ssh_list_directory(self, session_id: str, path: str) -> str:
        """Return the server's listing of a remote directory."""
        return self._call_for_text(
            "ssh_list_directory", {"sessionId": session_id, "path": path}, "directory listing"
        )

    def ssh_upload_dir(self, session_id: str, local_dir: str, remote_dir: str) -> None:
        """Copy a local directory to the server."""
        self.call_tool(
            "ssh_upload_directory",
            {"sessionId": session_id, "source": local_dir, "destination": remote_dir},
        )

    def ssh_download_dir(self, session_id: str, remote_dir: str, local_dir: str) -> None:
        """Copy a remote directory to the local machine."""
        self.call_tool(
            "ssh_download_directory",
            {
                "sessionId": session_id,
                "source": remote_dir,
                "destination": local_dir,
                "direction": "download",
                "isDirectory": True,
            },
        )

    def ssh_disconnect(self, session_id: str) -> None:
        """Close the session."""
        self.call_tool("ssh_disconnect", {"sessionId": session_id})