"""Host and command policy checks for SSH operations."""

from __future__ import annotations

import ipaddress
import logging
import threading
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL = 5 * 60.0
DEFAULT_MAX_AGE = 30 * 60.0


class SecurityError(Exception):
    """Raised when an operation is refused by the security policy."""


@dataclass
class SecurityConfig:
    """Security settings; durations are in seconds.

    Empty ``allowed_hosts`` or ``allowed_commands`` allow everything that
    is not explicitly denied.
    """

    allowed_hosts: list[str] = field(default_factory=list)
    denied_hosts: list[str] = field(default_factory=list)
    allowed_commands: list[str] = field(default_factory=list)
    denied_commands: list[str] = field(default_factory=list)
    rate_limit: float = 0.0
    logging_enabled: bool = False


def _strip_port(address: str) -> str:
    """Return the host part of ``host:port``, or the address unchanged."""
    if address.startswith("["):
        end = address.find("]")
        if end != -1 and address[end + 1 : end + 2] == ":" and ":" not in address[end + 2 :]:
            return address[1:end]
        return address
    host, sep, _port = address.rpartition(":")
    if not sep or ":" in host:
        return address
    return host


def match_host(host: str, pattern: str) -> bool:
    """Match a host against an exact name, a ``*.domain`` wildcard or a CIDR block."""
    if host == pattern:
        return True
    if pattern.startswith("*."):
        return host.endswith(pattern[1:])
    if "/" in pattern:
        try:
            network = ipaddress.ip_network(pattern, strict=False)
            address = ipaddress.ip_address(host)
        except ValueError:
            return False
        if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
            address = address.ipv4_mapped
        return address in network
    return False


class SecurityManager:
    """Applies host and command policies and per-session rate limiting."""

    def __init__(self, config: SecurityConfig) -> None:
        self.config = config
        self._last_operation: dict[str, float] = {}
        self._lock = threading.Lock()

    def _log(self, operation: str, session_id: str, details: str) -> None:
        if self.config.logging_enabled:
            logger.info("[SSH-MCP] %s - Session: %s - Details: %s", operation, session_id, details)

    def check_host(self, host: str) -> str:
        """Raise SecurityError if the host may not be contacted; return the bare host name."""
        with self._lock:
            host = _strip_port(host)
            if any(match_host(host, denied) for denied in self.config.denied_hosts):
                self._log("host_denied", host, "")
                raise SecurityError(f"host {host} is denied")
            if not self.config.allowed_hosts:
                return host
            if any(match_host(host, allowed) for allowed in self.config.allowed_hosts):
                return host
            self._log("host_not_allowed", host, "")
            raise SecurityError(f"host {host} is not allowed")

    def check_command(self, session_id: str, command: str) -> None:
        """Raise SecurityError if the command may not run in this session now."""
        with self._lock:
            if self.config.rate_limit > 0:
                now = time.monotonic()
                last = self._last_operation.get(session_id)
                if last is not None and now - last < self.config.rate_limit:
                    self._log("rate_limited", session_id, command)
                    raise SecurityError("rate limit exceeded, please try again later")
                self._last_operation[session_id] = now

            if any(command.startswith(denied) for denied in self.config.denied_commands):
                self._log("command_denied", session_id, command)
                raise SecurityError(f"command '{command}' is denied")

            if not self.config.allowed_commands or any(
                command.startswith(allowed) for allowed in self.config.allowed_commands
            ):
                self._log("command_executed", session_id, command)
                return

            self._log("command_not_allowed", session_id, command)
            raise SecurityError(f"command '{command}' is not allowed")

    def cleanup_rate_limiter(self, max_age: float) -> None:
        """Forget sessions whose last operation is older than ``max_age`` seconds."""
        with self._lock:
            now = time.monotonic()
            stale = [sid for sid, last in self._last_operation.items() if now - last > max_age]
            for sid in stale:
                del self._last_operation[sid]

    def start_cleanup_routine(
        self, interval: float = 0.0, max_age: float = 0.0
    ) -> threading.Event:
        """Run cleanup_rate_limiter periodically in a daemon thread.

        Non-positive values fall back to 5 minutes and 30 minutes. Setting the
        returned event stops the thread.
        """
        if interval <= 0:
            interval = DEFAULT_CLEANUP_INTERVAL
        if max_age <= 0:
            max_age = DEFAULT_MAX_AGE
        stop = threading.Event()

        def run() -> None:
            while not stop.wait(interval):
                self.cleanup_rate_limiter(max_age)

        threading.Thread(target=run, name="rate-limiter-cleanup", daemon=True).start()
        return stop