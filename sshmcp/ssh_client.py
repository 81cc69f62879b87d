"""SSH connections and remote command execution."""

from __future__ import annotations

import io
import threading
import time
from datetime import datetime
from typing import Any

import paramiko

from .args import CommandArgs, ConnectArgs, DisconnectArgs
from .session import SessionManager

DEFAULT_PORT = 22
DEFAULT_COMMAND_TIMEOUT = 30

_KEY_TYPES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)
_CHUNK = 32768
_POLL_INTERVAL = 0.01

_id_lock = threading.Lock()
_last_stamp = 0


class SSHError(Exception):
    """Raised when an SSH connection or command fails.

    ``output`` holds the command's standard error when it ran but failed.
    """

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


def generate_session_id(host: str, username: str) -> str:
    """Return a unique identifier built from host, user and a nanosecond stamp."""
    global _last_stamp
    with _id_lock:
        stamp = max(time.time_ns(), _last_stamp + 1)
        _last_stamp = stamp
    return f"{host}-{username}-{stamp}"


def _rfc3339(moment: datetime) -> str:
    text = moment.isoformat(timespec="seconds")
    return text[:-6] + "Z" if text.endswith("+00:00") else text


def _load_private_key(path: str) -> paramiko.PKey:
    try:
        with open(path, "rb") as handle:
            raw = handle.read()
    except OSError as exc:
        raise SSHError(f"unable to read private key: {exc}") from exc
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise SSHError(f"unable to parse private key: {exc}") from exc
    failure: Exception | None = None
    for key_type in _KEY_TYPES:
        try:
            return key_type.from_private_key(io.StringIO(text))
        except (paramiko.SSHException, ValueError) as exc:
            failure = exc
    raise SSHError(f"unable to parse private key: {failure}")


def _collect(channel: Any, deadline: float) -> tuple[int, bytes, bytes]:
    """Drain a running channel until it exits or the deadline passes."""
    stdout, stderr = bytearray(), bytearray()
    while True:
        progressed = False
        while channel.recv_ready():
            stdout += channel.recv(_CHUNK)
            progressed = True
        while channel.recv_stderr_ready():
            stderr += channel.recv_stderr(_CHUNK)
            progressed = True
        if (
            channel.exit_status_ready()
            and not channel.recv_ready()
            and not channel.recv_stderr_ready()
        ):
            return channel.recv_exit_status(), bytes(stdout), bytes(stderr)
        if time.monotonic() >= deadline:
            raise SSHError("command execution timed out")
        if not progressed:
            time.sleep(_POLL_INTERVAL)


class SSHClient:
    """Opens SSH connections and runs commands on registered sessions."""

    def __init__(self, session_manager: SessionManager) -> None:
        self.session_manager = session_manager

    def connect(self, args: ConnectArgs) -> str:
        """Open a connection and return the new session's identifier."""
        auth: dict[str, Any]
        if args.password:
            auth = {"password": args.password}
        elif args.key_path:
            auth = {"pkey": _load_private_key(args.key_path)}
        else:
            raise SSHError("no authentication method provided")

        port = args.port or DEFAULT_PORT
        timeout = args.timeout if args.timeout and args.timeout > 0 else None

        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                args.host,
                port=port,
                username=args.username,
                timeout=timeout,
                allow_agent=False,
                look_for_keys=False,
                **auth,
            )
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise SSHError(f"failed to connect to SSH server: {exc}") from exc

        session_id = generate_session_id(args.host, args.username)
        self.session_manager.add_session(session_id, client, args.host, args.username)
        return session_id

    def execute_command(self, args: CommandArgs) -> str:
        """Run a command in the session and return its standard output."""
        session = self.session_manager.get_session(args.session_id)
        timeout = args.timeout if args.timeout > 0 else DEFAULT_COMMAND_TIMEOUT

        transport = session.client.get_transport() if session.client is not None else None
        if transport is None or not transport.is_active():
            raise SSHError("failed to create SSH session: connection is not open")
        try:
            channel = transport.open_session()
        except paramiko.SSHException as exc:
            raise SSHError(f"failed to create SSH session: {exc}") from exc

        try:
            deadline = time.monotonic() + timeout
            try:
                channel.exec_command(args.command)
            except paramiko.SSHException as exc:
                raise SSHError(f"command execution failed: {exc}") from exc
            status, stdout, stderr = _collect(channel, deadline)
        finally:
            channel.close()

        if status != 0:
            errors = stderr.decode("utf-8", errors="replace")
            if status == -1:
                reason = "remote command exited without exit status or exit signal"
            else:
                reason = f"Process exited with status {status}"
            raise SSHError(f"command execution failed: {reason}", output=errors)
        return stdout.decode("utf-8", errors="replace")

    def disconnect(self, args: DisconnectArgs) -> None:
        """Close the session and forget it."""
        self.session_manager.remove_session(args.session_id)

    def list_sessions(self) -> list[dict[str, str]]:
        """Describe every open session with RFC 3339 timestamps."""
        return [
            {
                "id": session.id,
                "host": session.host,
                "username": session.username,
                "createdAt": _rfc3339(session.created_at),
                "lastActivity": _rfc3339(session.last_activity),
            }
            for session in self.session_manager.list_sessions()
        ]