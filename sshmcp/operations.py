"""File transfer and directory listing over SSH using the SCP protocol."""

from __future__ import annotations

import logging
import os
import posixpath
import tempfile
from typing import Any, BinaryIO, Callable

import paramiko

from .session import Session, SessionManager

logger = logging.getLogger(__name__)

_CHUNK = 32768
_ACK = b"\x00"

Transfer = Callable[[BinaryIO, BinaryIO], None]


class ScpError(Exception):
    """Raised when a file operation over SSH fails."""


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="surrogateescape")


def _send(writer: BinaryIO, data: bytes) -> None:
    writer.write(data)
    flush = getattr(writer, "flush", None)
    if flush is not None:
        flush()


def _ack(writer: BinaryIO) -> None:
    try:
        _send(writer, _ACK)
    except OSError as exc:
        raise ScpError(f"failed to acknowledge SCP command: {exc}") from exc


def _read_message(reader: BinaryIO) -> str:
    return _decode(reader.readline()).rstrip("\r\n")


def _copy_exact(src: BinaryIO, dest: BinaryIO, size: int) -> None:
    """Copy exactly ``size`` bytes, raising EOFError if the source runs dry."""
    remaining = size
    while remaining > 0:
        chunk = src.read(min(_CHUNK, remaining))
        if not chunk:
            raise EOFError(f"unexpected end of data with {remaining} bytes outstanding")
        dest.write(chunk)
        remaining -= len(chunk)


def check_scp_status(reader: BinaryIO) -> None:
    """Read one status byte; raise ScpError with the remote message if it is not zero.

    An exhausted stream raises EOFError.
    """
    code = reader.read(1)
    if not code:
        raise EOFError("unexpected end of SCP stream")
    if code != _ACK:
        raise ScpError(_read_message(reader))


def _send_file(filename: str, src: BinaryIO, writer: BinaryIO, reader: BinaryIO, size: int) -> None:
    _send(writer, b"C0644 %d " % size + os.fsencode(filename) + b"\n")
    try:
        check_scp_status(reader)
    except (ScpError, EOFError) as exc:
        raise ScpError(f"failed to send file header: {exc}") from exc

    try:
        _copy_exact(src, writer, size)
    except (OSError, EOFError) as exc:
        raise ScpError(f"failed to send file content: {exc}") from exc

    try:
        _send(writer, _ACK)
    except OSError as exc:
        raise ScpError(f"failed to send file transfer completion: {exc}") from exc

    try:
        check_scp_status(reader)
    except (ScpError, EOFError) as exc:
        raise ScpError(f"failed to get final acknowledgment: {exc}") from exc


def scp_upload_file(
    filename: str, src: BinaryIO, writer: BinaryIO, reader: BinaryIO, size: int
) -> None:
    """Send one file under ``filename``.

    SCP is length-prefixed, so a size of zero makes the source be spooled to
    a temporary file first to learn its real length.
    """
    if size != 0:
        _send_file(filename, src, writer, reader, size)
        return
    try:
        spool = tempfile.TemporaryFile(prefix="ssh-mcp-upload")
    except OSError as exc:
        raise ScpError(f"error creating temporary file for upload: {exc}") from exc
    with spool:
        try:
            while chunk := src.read(_CHUNK):
                spool.write(chunk)
            spool.flush()
            size = spool.tell()
            spool.seek(0)
        except OSError as exc:
            raise ScpError(f"error copying data to temporary file: {exc}") from exc
        _send_file(filename, spool, writer, reader, size)


def _upload_directory(name: str, path: str, writer: BinaryIO, reader: BinaryIO) -> None:
    logger.debug("SCP: starting directory upload: %s", name)
    _send(writer, b"D0755 0 " + os.fsencode(name) + b"\n")
    check_scp_status(reader)
    scp_upload_dir_entries(path, writer, reader)
    _send(writer, b"E\n")
    check_scp_status(reader)


def scp_upload_dir_entries(root: str, writer: BinaryIO, reader: BinaryIO) -> None:
    """Send every entry of a local directory, descending into subdirectories.

    Symbolic links are followed; entries are sent in name order.
    """
    with os.scandir(root) as listing:
        entries = sorted(listing, key=lambda entry: entry.name)
    for entry in entries:
        path = os.path.join(root, entry.name)
        if entry.is_dir():
            _upload_directory(entry.name, path, writer, reader)
            continue
        with open(path, "rb") as handle:
            size = os.fstat(handle.fileno()).st_size
            scp_upload_file(entry.name, handle, writer, reader, size)


def _parse_header(header: bytes, what: str) -> tuple[int, str]:
    text = _decode(header)
    parts = text.split(" ", 2)
    if len(parts) != 3:
        raise ScpError(f"invalid {what} header: {text!r}")
    try:
        size = int(parts[1])
    except ValueError as exc:
        raise ScpError(f"invalid file size in header: {exc}") from exc
    if size < 0:
        raise ScpError(f"invalid file size in header: {parts[1]}")
    name = parts[2].rstrip("\n")
    if not name or "/" in name or name in (".", ".."):
        raise ScpError(f"invalid name in {what} header: {name!r}")
    return size, name


def scp_download_dir(dest_path: str, writer: BinaryIO, reader: BinaryIO, strip_name: bool) -> None:
    """Receive a directory tree into ``dest_path``.

    With ``strip_name`` the first directory received is written straight into
    ``dest_path`` rather than into a subdirectory named after it.
    """
    while True:
        header = reader.readline()
        if not header or not header.endswith(b"\n"):
            return
        kind = header[:1]
        if kind == b"E":
            _ack(writer)
            return
        if kind == b"T":
            _ack(writer)
        elif kind in (b"\x01", b"\x02"):
            continue
        elif kind == b"C":
            size, name = _parse_header(header, "file")
            _ack(writer)
            file_path = os.path.join(dest_path, name)
            with open(file_path, "wb") as handle:
                try:
                    _copy_exact(reader, handle, size)
                except EOFError as exc:
                    raise ScpError(f"failed to copy file content: {exc}") from exc
            check_scp_status(reader)
            _ack(writer)
        elif kind == b"D":
            _size, name = _parse_header(header, "directory")
            _ack(writer)
            dir_path = dest_path if strip_name else os.path.join(dest_path, name)
            os.makedirs(dir_path, 0o755, exist_ok=True)
            scp_download_dir(dir_path, writer, reader, False)
        else:
            raise ScpError(f"unsupported scp command: {_decode(header)!r}")


def parse_directory_listing(output: str) -> list[dict[str, str]]:
    """Parse ``ls -la`` output into name, permissions, size, date and isDirectory."""
    result = []
    for line in output.split("\n"):
        if not line or line.startswith("total "):
            continue
        fields = line.split()
        if len(fields) < 9:
            continue
        permissions = fields[0]
        result.append(
            {
                "name": " ".join(fields[8:]),
                "permissions": permissions,
                "size": fields[4],
                "date": " ".join(fields[5:8]),
                "isDirectory": "true" if permissions.startswith("d") else "false",
            }
        )
    return result


def _exit_reason(status: int) -> str:
    if status == -1:
        return "remote command exited without exit status or exit signal"
    return f"Process exited with status {status}"


def _open_channel(session: Session) -> Any:
    client = session.client
    transport = client.get_transport() if client is not None else None
    if transport is None or not transport.is_active():
        raise ScpError("failed to create SSH session: connection is not open")
    try:
        return transport.open_session()
    except paramiko.SSHException as exc:
        raise ScpError(f"failed to create SSH session: {exc}") from exc


def _split_remote(path: str) -> tuple[str, str]:
    path = path.replace(os.sep, "/")
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return posixpath.dirname(path) or ".", posixpath.basename(path)


class FileOperations:
    """Copies files and directories to and from sessions' hosts."""

    def __init__(self, session_manager: SessionManager) -> None:
        self.session_manager = session_manager

    def _scp_session(self, session: Session, command: str, transfer: Transfer) -> None:
        channel = _open_channel(session)
        try:
            writer = channel.makefile("wb")
            reader = channel.makefile("rb")
            errors = channel.makefile_stderr("rb")
            try:
                channel.exec_command(command)
            except paramiko.SSHException as exc:
                raise ScpError(f"failed to start SCP command: {exc}") from exc

            failure: Exception | None = None
            try:
                transfer(writer, reader)
            except EOFError:
                pass
            except (ScpError, OSError, ValueError, paramiko.SSHException) as exc:
                failure = exc
            finally:
                channel.shutdown_write()
            if failure is not None:
                raise ScpError(f"SCP protocol error: {failure}") from failure

            status = channel.recv_exit_status()
            if status != 0:
                stderr = errors.read().decode("utf-8", errors="replace")
                message = f"SCP command failed: {_exit_reason(status)}"
                if stderr:
                    message += f", stderr: {stderr}"
                raise ScpError(message)
        finally:
            channel.close()

    def upload(self, session_id: str, local_path: str, remote_path: str) -> None:
        """Copy a local file to ``remote_path``."""
        session = self.session_manager.get_session(session_id)
        target_dir, target_file = _split_remote(remote_path)
        try:
            local_file = open(local_path, "rb")
        except OSError as exc:
            raise ScpError(f"failed to open local file: {exc}") from exc
        with local_file:
            size = os.fstat(local_file.fileno()).st_size

            def transfer(writer: BinaryIO, reader: BinaryIO) -> None:
                check_scp_status(reader)
                scp_upload_file(target_file, local_file, writer, reader, size)

            self._scp_session(session, f"scp -vt {target_dir}", transfer)

    def download(self, session_id: str, remote_path: str, local_path: str) -> None:
        """Copy a remote file to ``local_path``."""
        session = self.session_manager.get_session(session_id)
        try:
            local_file = open(local_path, "wb")
        except OSError as exc:
            raise ScpError(f"failed to create local file: {exc}") from exc

        def transfer(writer: BinaryIO, reader: BinaryIO) -> None:
            try:
                _send(writer, _ACK)
            except OSError as exc:
                raise ScpError(f"failed to initiate transfer: {exc}") from exc

            header = reader.readline()
            if not header.endswith(b"\n"):
                raise ScpError("failed to read file header: unexpected end of stream")
            text = _decode(header).rstrip("\n")
            if text[:1] in ("\x01", "\x02"):
                raise ScpError(text[1:])
            if not text.startswith("C"):
                raise ScpError(f"invalid file header: {text}")
            parts = text.split(" ")
            if len(parts) < 3:
                raise ScpError(f"invalid file header format: {text}")
            try:
                size = int(parts[1])
            except ValueError as exc:
                raise ScpError(f"invalid file size in header: {exc}") from exc

            try:
                _send(writer, _ACK)
            except OSError as exc:
                raise ScpError(f"failed to send acknowledgment: {exc}") from exc

            try:
                _copy_exact(reader, local_file, size)
            except (OSError, EOFError) as exc:
                raise ScpError(f"failed to copy file content: {exc}") from exc

            status = reader.read(1)
            if not status:
                raise ScpError("failed to read status byte: unexpected end of stream")
            if status != _ACK:
                raise ScpError(f"SCP protocol error: {_read_message(reader)}")

            try:
                _send(writer, _ACK)
            except OSError as exc:
                raise ScpError(f"failed to send final acknowledgment: {exc}") from exc

        with local_file:
            self._scp_session(session, f"scp -vf {remote_path}", transfer)

    def upload_dir(self, session_id: str, local_dir: str, remote_dir: str) -> None:
        """Copy a local directory into ``remote_dir``.

        A trailing slash on ``local_dir`` copies only its contents.
        """
        session = self.session_manager.get_session(session_id)
        remote_dir = remote_dir.replace(os.sep, "/")

        def transfer(writer: BinaryIO, reader: BinaryIO) -> None:
            code = reader.read(1)
            if not code:
                raise ScpError("failed to read status: unexpected end of stream")
            if code != _ACK:
                raise ScpError(_read_message(reader))
            if local_dir.endswith(("/", os.sep)):
                scp_upload_dir_entries(local_dir, writer, reader)
            else:
                _upload_directory(os.path.basename(local_dir), local_dir, writer, reader)

        self._scp_session(session, f"scp -vrt {remote_dir}", transfer)

    def download_dir(self, session_id: str, remote_path: str, local_path: str) -> None:
        """Copy the contents of a remote directory into ``local_path``, creating it if needed."""
        session = self.session_manager.get_session(session_id)
        if not os.path.exists(local_path):
            try:
                os.makedirs(local_path, 0o755)
            except OSError as exc:
                raise ScpError(f"failed to create local directory: {exc}") from exc
        elif not os.path.isdir(local_path):
            raise ScpError(f"local path {local_path} is not a directory")

        def transfer(writer: BinaryIO, reader: BinaryIO) -> None:
            _send(writer, _ACK)
            scp_download_dir(local_path, writer, reader, True)

        self._scp_session(session, f"scp -rf {remote_path}", transfer)

    def list_directory(self, session_id: str, remote_path: str) -> list[dict[str, str]]:
        """List a remote directory with ``ls -la`` and return the parsed entries."""
        session = self.session_manager.get_session(session_id)
        channel = _open_channel(session)
        try:
            channel.set_combine_stderr(True)
            output_file = channel.makefile("rb")
            try:
                channel.exec_command(f"ls -la {remote_path}")
            except paramiko.SSHException as exc:
                raise ScpError(f"failed to list directory: {exc}") from exc
            output = output_file.read()
            status = channel.recv_exit_status()
        finally:
            channel.close()
        if status != 0:
            raise ScpError(f"failed to list directory: {_exit_reason(status)}")
        return parse_directory_listing(output.decode("utf-8", errors="replace"))