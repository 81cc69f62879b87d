import io

import pytest

from sshmcp.security import SecurityConfig, SecurityManager
from sshmcp.session import SessionManager
from sshmcp.tools import (
    Tool,
    ToolError,
    ToolResult,
    get_tools,
    int_or_default,
    string_or_empty,
)


class FakeChannel:
    def __init__(self, output: bytes, status: int = 0) -> None:
        self._pending = output
        self._full = output
        self.status = status
        self.commands = []

    def exec_command(self, command):
        self.commands.append(command)

    def recv_ready(self):
        return bool(self._pending)

    def recv(self, size):
        data, self._pending = self._pending, b""
        return data

    def recv_stderr_ready(self):
        return False

    def exit_status_ready(self):
        return True

    def recv_exit_status(self):
        return self.status

    def set_combine_stderr(self, combine):
        pass

    def makefile(self, mode):
        return io.BytesIO(self._full)

    def close(self):
        pass


class FakeTransport:
    def __init__(self, channel):
        self.channel = channel

    def is_active(self):
        return True

    def open_session(self):
        return self.channel


class FakeClient:
    def __init__(self, channel):
        self.transport = FakeTransport(channel)
        self.closed = False

    def get_transport(self):
        return self.transport

    def close(self):
        self.closed = True


def make_tools(config=None):
    sessions = SessionManager(600)
    security = SecurityManager(config or SecurityConfig())
    return sessions, {tool.name: tool for tool in get_tools(sessions, security)}


def test_string_or_empty():
    assert string_or_empty("abc") == "abc"
    assert string_or_empty(None) == ""
    assert string_or_empty(5) == ""


@pytest.mark.parametrize(
    "value, expected",
    [(7, 7), (3.9, 3), ("42", 42), ("-5", -5), ("x", 22), (None, 22), (True, 22), ("4.2", 22)],
)
def test_int_or_default(value, expected):
    assert int_or_default(value, 22) == expected


def test_tool_names_in_order():
    _, tools = make_tools()
    assert list(tools) == [
        "ssh_connect",
        "ssh_execute",
        "ssh_disconnect",
        "ssh_list_sessions",
        "ssh_upload_file",
        "ssh_download_file",
        "ssh_list_directory",
        "ssh_upload_directory",
        "ssh_download_directory",
    ]


def test_connect_schema():
    _, tools = make_tools()
    schema = tools["ssh_connect"].input_schema()
    assert schema["type"] == "object"
    assert schema["required"] == ["host", "username"]
    assert schema["properties"]["port"]["type"] == "number"
    assert schema["properties"]["port"]["default"] == 22
    assert set(schema["properties"]) == {"host", "port", "username", "password", "keyPath"}


def test_list_sessions_schema_has_no_required():
    _, tools = make_tools()
    schema = tools["ssh_list_sessions"].input_schema()
    assert schema["properties"] == {}
    assert "required" not in schema


def test_result_wire_form():
    assert ToolResult("hi").to_json() == {"content": [{"type": "text", "text": "hi"}]}


def test_list_sessions_empty():
    _, tools = make_tools()
    assert tools["ssh_list_sessions"]({}).text == "No active SSH sessions"


def test_list_sessions_describes_session():
    sessions, tools = make_tools()
    sessions.add_session("s1", None, "host1", "user1")
    text = tools["ssh_list_sessions"]().text
    assert text.startswith("Active SSH Sessions:\n- ID: s1\n  Host: host1\n  Username: user1\n")
    assert text.endswith("\n\n")


def test_disconnect_existing_session():
    sessions, tools = make_tools()
    sessions.add_session("s1", None, "host1", "user1")
    assert tools["ssh_disconnect"]({"sessionId": "s1"}).text == "Disconnected session: s1"
    assert "s1" not in sessions


def test_disconnect_unknown_session():
    _, tools = make_tools()
    with pytest.raises(ToolError) as info:
        tools["ssh_disconnect"]({"sessionId": "missing"})
    assert info.value.result.text == "Disconnect error: session not found"
    assert str(info.value) == "session not found"


def test_connect_denied_host():
    password = "password"
    _, tools = make_tools(SecurityConfig(denied_hosts=["evil.com"]))
    with pytest.raises(ToolError) as info:
        tools["ssh_connect"]({"host": "evil.com", "username": "tester", "password": password})
    assert info.value.result.text == "Security error: host evil.com is denied"


def test_connect_without_authentication():
    _, tools = make_tools()
    with pytest.raises(ToolError) as info:
        tools["ssh_connect"]({"host": "example.com", "username": "tester"})
    assert info.value.result.text == "Connection error: no authentication method provided"


def test_execute_denied_command():
    _, tools = make_tools(SecurityConfig(denied_commands=["rm"]))
    with pytest.raises(ToolError) as info:
        tools["ssh_execute"]({"sessionId": "s1", "command": "rm -rf /"})
    assert info.value.result.text == "Security error: command 'rm -rf /' is denied"


def test_execute_unknown_session():
    _, tools = make_tools()
    with pytest.raises(ToolError) as info:
        tools["ssh_execute"]({"sessionId": "missing", "command": "ls -la"})
    assert info.value.result.text == "Command error: session not found"


def test_execute_returns_output():
    sessions, tools = make_tools()
    channel = FakeChannel(b"hello\n")
    sessions.add_session("s1", FakeClient(channel), "host1", "user1")
    result = tools["ssh_execute"]({"sessionId": "s1", "command": "echo hello"})
    assert result.text == "hello\n"
    assert channel.commands == ["echo hello"]


def test_upload_unknown_session():
    _, tools = make_tools()
    with pytest.raises(ToolError) as info:
        tools["ssh_upload_file"]({"sessionId": "missing", "source": "a", "destination": "b"})
    assert info.value.result.text == "Upload error: session not found"


def test_upload_missing_local_file(tmp_path):
    sessions, tools = make_tools()
    sessions.add_session("s1", None, "host1", "user1")
    missing = str(tmp_path / "absent.txt")
    with pytest.raises(ToolError) as info:
        tools["ssh_upload_file"]({"sessionId": "s1", "source": missing, "destination": "/tmp/x"})
    assert info.value.result.text.startswith("Upload error: failed to open local file: ")


def test_upload_directory_unknown_session():
    _, tools = make_tools()
    with pytest.raises(ToolError) as info:
        tools["ssh_upload_directory"]({"sessionId": "missing", "source": "a", "destination": "b"})
    assert info.value.result.text == "Directory upload error: session not found"


def test_download_directory_onto_file(tmp_path):
    sessions, tools = make_tools()
    sessions.add_session("s1", None, "host1", "user1")
    target = tmp_path / "plain.txt"
    target.write_text("data")
    with pytest.raises(ToolError) as info:
        tools["ssh_download_directory"](
            {"sessionId": "s1", "source": "/remote", "destination": str(target)}
        )
    assert info.value.result.text == (
        f"Directory download error: local path {target} is not a directory"
    )


def test_list_directory_formats_entries():
    sessions, tools = make_tools()
    listing = (
        b"total 16\n"
        b"-rw-r--r--  1 user group  123 Jan  1 12:34 file1.txt\n"
        b"drwxr-xr-x  3 user group 4096 Jan  1 12:34 dir1\n"
    )
    channel = FakeChannel(listing)
    sessions.add_session("s1", FakeClient(channel), "host1", "user1")
    result = tools["ssh_list_directory"]({"sessionId": "s1", "path": "/tmp"})
    assert result.text == (
        "Directory contents of /tmp:\n"
        "-rw-r--r-- 123 Jan 1 12:34 file1.txt\n"
        "drwxr-xr-x 4096 Jan 1 12:34 dir1/\n"
    )
    assert channel.commands == ["ls -la /tmp"]


def test_list_directory_empty():
    sessions, tools = make_tools()
    sessions.add_session("s1", FakeClient(FakeChannel(b"total 0\n")), "host1", "user1")
    assert tools["ssh_list_directory"]({"sessionId": "s1", "path": "/e"}).text == (
        "Directory is empty"
    )


def test_custom_tool_call_passes_arguments():
    seen = []

    def handler(args):
        seen.append(dict(args))
        return ToolResult("done")

    tool = Tool("custom", "A tool", handler)
    assert tool(None).text == "done"
    assert seen == [{}]