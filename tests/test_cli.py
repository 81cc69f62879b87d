import io
import json

import pytest

from sshmcp.cli import main, parse_args


def test_default_transport_is_http():
    assert parse_args([]).transport == "http"


@pytest.mark.parametrize(
    "argv",
    [["-t", "stdio"], ["--transport", "stdio"], ["-transport", "stdio"], ["--transport=stdio"]],
)
def test_transport_flags(argv):
    assert parse_args(argv).transport == "stdio"


def test_unknown_flag_exits_with_usage_error():
    with pytest.raises(SystemExit) as excinfo:
        parse_args(["--bogus"])
    assert excinfo.value.code == 2


def test_main_serves_stdio(monkeypatch, capsys):
    request = {"jsonrpc": "2.0", "id": 5, "method": "tools/list"}
    monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps(request) + "\n"))
    assert main(["-t", "stdio"]) == 0
    lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
    reply = json.loads(lines[-1])
    assert reply["id"] == 5
    assert "ssh_connect" in {tool["name"] for tool in reply["result"]["tools"]}


def test_main_stdio_reports_tool_errors(monkeypatch, capsys):
    request = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "tools/call",
        "params": {"name": "ssh_execute", "arguments": {"sessionId": "gone", "command": "ls"}},
    }
    monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps(request) + "\n"))
    assert main(["--transport", "stdio"]) == 0
    lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
    assert json.loads(lines[-1])["error"]["message"] == "session not found"