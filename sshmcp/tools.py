"""The SSH tools offered to MCP clients: their schemas and handlers."""

from __future__ import annotations

import math
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping, Optional

from .args import (
    CommandArgs,
    ConnectArgs,
    DirectoryDownloadArgs,
    DirectoryUploadArgs,
    DisconnectArgs,
    FileTransferArgs,
    ListDirectoryArgs,
)
from .operations import FileOperations, ScpError
from .security import SecurityError, SecurityManager
from .session import SessionManager, SessionNotFoundError
from .ssh_client import SSHClient, SSHError

_INTEGER = re.compile(r"[+-]?[0-9]+")

_FAILURES = (SSHError, ScpError, SecurityError, SessionNotFoundError, OSError)


def string_or_empty(value: Any) -> str:
    """Return ``value`` if it is a string, otherwise an empty string."""
    return value if isinstance(value, str) else ""


def int_or_default(value: Any, default: int) -> int:
    """Convert an int, a float (truncated) or a decimal string; fall back to ``default``."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else default
    if isinstance(value, str) and _INTEGER.fullmatch(value):
        return int(value)
    return default


@dataclass(frozen=True)
class ToolResult:
    """The text a tool call answers with."""

    text: str

    def to_json(self) -> dict[str, Any]:
        """Return the result in MCP wire form."""
        return {"content": [{"type": "text", "text": self.text}]}


class ToolError(Exception):
    """Raised by a tool handler; ``result`` holds the text reported to the caller."""

    def __init__(self, result: ToolResult, message: str) -> None:
        super().__init__(message)
        self.result = result


@contextmanager
def _reported(prefix: str) -> Iterator[None]:
    try:
        yield
    except _FAILURES as exc:
        raise ToolError(ToolResult(prefix + str(exc)), str(exc)) from exc


@dataclass(frozen=True)
class ToolParameter:
    """One named argument of a tool."""

    name: str
    kind: str
    description: str
    required: bool = False
    default: Any = None

    def schema(self) -> dict[str, Any]:
        """Return the JSON schema of this parameter."""
        spec: dict[str, Any] = {"type": self.kind, "description": self.description}
        if self.default is not None:
            spec["default"] = self.default
        return spec


Handler = Callable[[Mapping[str, Any]], ToolResult]


@dataclass(frozen=True)
class Tool:
    """A named tool with its parameters and the handler that runs it."""

    name: str
    description: str
    handler: Handler
    parameters: tuple[ToolParameter, ...] = field(default_factory=tuple)

    def input_schema(self) -> dict[str, Any]:
        """Return the JSON schema describing the tool's arguments."""
        schema: dict[str, Any] = {
            "type": "object",
            "properties": {p.name: p.schema() for p in self.parameters},
        }
        required = [p.name for p in self.parameters if p.required]
        if required:
            schema["required"] = required
        return schema

    def __call__(self, arguments: Optional[Mapping[str, Any]] = None) -> ToolResult:
        return self.handler(arguments or {})


def _session_param(description: str = "The SSH session identifier") -> ToolParameter:
    return ToolParameter("sessionId", "string", description, required=True)


def _string(name: str, description: str) -> ToolParameter:
    return ToolParameter(name, "string", description, required=True)


def get_tools(
    session_manager: SessionManager, security_manager: SecurityManager
) -> list[Tool]:
    """Build every SSH tool, bound to the given session and security managers."""
    ssh_client = SSHClient(session_manager)
    file_ops = FileOperations(session_manager)

    def connect(args: Mapping[str, Any]) -> ToolResult:
        connect_args = ConnectArgs(
            host=string_or_empty(args.get("host")),
            username=string_or_empty(args.get("username")),
            port=int_or_default(args.get("port"), 22),
            password=string_or_empty(args.get("password")),
            key_path=string_or_empty(args.get("keyPath")),
            timeout=0,
        )
        with _reported("Security error: "):
            security_manager.check_host(connect_args.host)
        with _reported("Connection error: "):
            session_id = ssh_client.connect(connect_args)
        return ToolResult("Connected. Session ID: " + session_id)

    def execute(args: Mapping[str, Any]) -> ToolResult:
        command_args = CommandArgs(
            session_id=string_or_empty(args.get("sessionId")),
            command=string_or_empty(args.get("command")),
        )
        with _reported("Security error: "):
            security_manager.check_command(command_args.session_id, command_args.command)
        with _reported("Command error: "):
            output = ssh_client.execute_command(command_args)
        return ToolResult(output)

    def disconnect(args: Mapping[str, Any]) -> ToolResult:
        disconnect_args = DisconnectArgs(session_id=string_or_empty(args.get("sessionId")))
        with _reported("Disconnect error: "):
            ssh_client.disconnect(disconnect_args)
        return ToolResult("Disconnected session: " + disconnect_args.session_id)

    def list_sessions(args: Mapping[str, Any]) -> ToolResult:
        sessions = ssh_client.list_sessions()
        if not sessions:
            return ToolResult("No active SSH sessions")
        lines = ["Active SSH Sessions:\n"]
        for sess in sessions:
            lines.append(
                f"- ID: {sess['id']}\n"
                f"  Host: {sess['host']}\n"
                f"  Username: {sess['username']}\n"
                f"  Created: {sess['createdAt']}\n"
                f"  Last Activity: {sess['lastActivity']}\n\n"
            )
        return ToolResult("".join(lines))

    def transfer_args(args: Mapping[str, Any], direction: str) -> FileTransferArgs:
        return FileTransferArgs(
            session_id=string_or_empty(args.get("sessionId")),
            source=string_or_empty(args.get("source")),
            destination=string_or_empty(args.get("destination")),
            direction=direction,
        )

    def upload_file(args: Mapping[str, Any]) -> ToolResult:
        transfer = transfer_args(args, "upload")
        with _reported("Upload error: "):
            file_ops.upload(transfer.session_id, transfer.source, transfer.destination)
        return ToolResult("File uploaded successfully")

    def download_file(args: Mapping[str, Any]) -> ToolResult:
        transfer = transfer_args(args, "download")
        with _reported("Download error: "):
            file_ops.download(transfer.session_id, transfer.source, transfer.destination)
        return ToolResult("File downloaded successfully")

    def list_directory(args: Mapping[str, Any]) -> ToolResult:
        list_args = ListDirectoryArgs(
            session_id=string_or_empty(args.get("sessionId")),
            path=string_or_empty(args.get("path")),
        )
        with _reported("List directory error: "):
            files = file_ops.list_directory(list_args.session_id, list_args.path)
        if not files:
            return ToolResult("Directory is empty")
        lines = [f"Directory contents of {list_args.path}:\n"]
        for entry in files:
            marker = "/" if entry["isDirectory"] == "true" else ""
            lines.append(
                f"{entry['permissions']} {entry['size']} {entry['date']} {entry['name']}{marker}\n"
            )
        return ToolResult("".join(lines))

    def upload_directory(args: Mapping[str, Any]) -> ToolResult:
        upload_args = DirectoryUploadArgs(
            session_id=string_or_empty(args.get("sessionId")),
            source=string_or_empty(args.get("source")),
            destination=string_or_empty(args.get("destination")),
        )
        with _reported("Directory upload error: "):
            file_ops.upload_dir(upload_args.session_id, upload_args.source, upload_args.destination)
        return ToolResult("Directory uploaded successfully")

    def download_directory(args: Mapping[str, Any]) -> ToolResult:
        download_args = DirectoryDownloadArgs(
            session_id=string_or_empty(args.get("sessionId")),
            source=string_or_empty(args.get("source")),
            destination=string_or_empty(args.get("destination")),
        )
        with _reported("Directory download error: "):
            file_ops.download_dir(
                download_args.session_id, download_args.source, download_args.destination
            )
        return ToolResult("Directory downloaded successfully")

    return [
        Tool(
            "ssh_connect",
            "Establish an SSH connection",
            connect,
            (
                _string("host", "The hostname or IP address of the SSH server"),
                ToolParameter("port", "number", "The port number of the SSH server", default=22),
                _string("username", "The username to authenticate with"),
                ToolParameter(
                    "password",
                    "string",
                    "Password for authentication. If using a private key, this can be left empty.",
                    default="",
                ),
                ToolParameter(
                    "keyPath",
                    "string",
                    "Path to the private key file for authentication. "
                    "If using password, this can be left empty.",
                    default="",
                ),
            ),
        ),
        Tool(
            "ssh_execute",
            "Execute a command over SSH",
            execute,
            (
                _session_param(),
                _string("command", "The command to execute"),
                ToolParameter(
                    "timeout", "number", "Command execution timeout in seconds", default=30
                ),
            ),
        ),
        Tool("ssh_disconnect", "Close an SSH connection", disconnect, (_session_param(),)),
        Tool("ssh_list_sessions", "List active SSH sessions", list_sessions),
        Tool(
            "ssh_upload_file",
            "Upload a file to the SSH server",
            upload_file,
            (
                _session_param(),
                _string("source", "Source file path"),
                _string("destination", "Destination file path"),
            ),
        ),
        Tool(
            "ssh_download_file",
            "Download a file from the SSH server",
            download_file,
            (
                _session_param(),
                _string("source", "Source file path"),
                _string("destination", "Destination file path"),
            ),
        ),
        Tool(
            "ssh_list_directory",
            "List contents of a directory on the SSH server",
            list_directory,
            (_session_param(), _string("path", "Directory path to list")),
        ),
        Tool(
            "ssh_upload_directory",
            "Upload a directory to the SSH server",
            upload_directory,
            (
                _session_param(),
                _string("source", "Source directory path on local machine"),
                _string("destination", "Destination directory path on remote server"),
            ),
        ),
        Tool(
            "ssh_download_directory",
            "Download a directory from the SSH server",
            download_directory,
            (
                _session_param(),
                _string("source", "Source directory path on remote server"),
                _string("destination", "Destination directory path on local machine"),
            ),
        ),
    ]