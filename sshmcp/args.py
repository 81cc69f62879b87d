"""Argument records accepted by the SSH tools."""

from __future__ import annotations

from dataclasses import MISSING, dataclass, field, fields
from typing import Any, Mapping, TypeVar

_T = TypeVar("_T", bound="_JsonArgs")

DIRECTIONS = ("upload", "download")


def _wire(name: str, **kwargs: Any) -> Any:
    return field(metadata={"json": name}, **kwargs)


class _JsonArgs:
    """Conversion between argument records and their wire-format mappings."""

    @classmethod
    def from_json(cls: type[_T], data: Mapping[str, Any]) -> _T:
        """Build the record from a mapping keyed by wire names."""
        kwargs: dict[str, Any] = {}
        for spec in fields(cls):  # type: ignore[arg-type]
            key = spec.metadata.get("json", spec.name)
            if key in data:
                kwargs[spec.name] = data[key]
            elif spec.default is MISSING and spec.default_factory is MISSING:
                raise ValueError(f"missing required argument: {key}")
        return cls(**kwargs)

    def to_json(self) -> dict[str, Any]:
        """Return the record as a mapping keyed by wire names."""
        return {
            spec.metadata.get("json", spec.name): getattr(self, spec.name)
            for spec in fields(self)  # type: ignore[arg-type]
        }


@dataclass
class ConnectArgs(_JsonArgs):
    """Arguments for opening an SSH connection; timeout is in seconds."""

    host: str = _wire("host")
    username: str = _wire("username")
    port: int = _wire("port", default=22)
    password: str = _wire("password", default="", repr=False)
    key_path: str = _wire("keyPath", default="")
    timeout: int = _wire("timeout", default=10)


@dataclass
class CommandArgs(_JsonArgs):
    """Arguments for running a command; timeout is in seconds."""

    session_id: str = _wire("sessionId")
    command: str = _wire("command")
    timeout: int = _wire("timeout", default=30)


@dataclass
class FileTransferArgs(_JsonArgs):
    """Arguments for copying a single file in either direction."""

    session_id: str = _wire("sessionId")
    source: str = _wire("source")
    destination: str = _wire("destination")
    direction: str = _wire("direction")

    def __post_init__(self) -> None:
        if self.direction not in DIRECTIONS:
            raise ValueError(f"direction must be 'upload' or 'download', not {self.direction!r}")


@dataclass
class DirectoryUploadArgs(_JsonArgs):
    """Arguments for copying a local directory to the remote server."""

    session_id: str = _wire("sessionId")
    source: str = _wire("source")
    destination: str = _wire("destination")


@dataclass
class DirectoryDownloadArgs(_JsonArgs):
    """Arguments for copying a remote directory to the local machine."""

    session_id: str = _wire("sessionId")
    source: str = _wire("source")
    destination: str = _wire("destination")


@dataclass
class DisconnectArgs(_JsonArgs):
    """Arguments for closing a session."""

    session_id: str = _wire("sessionId")


@dataclass
class ListDirectoryArgs(_JsonArgs):
    """Arguments for listing a remote directory."""

    session_id: str = _wire("sessionId")
    path: str = _wire("path")