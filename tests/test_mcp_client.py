import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from sshmcp.mcp_client import MCPClient, MCPClientError
from sshmcp.server import ServerConfig, make_http_server, setup_server


class _Stub:
    def __init__(self, results, sse=False):
        self.results = results
        self.sse = sse
        self.calls = []
        self.notifications = []
        self.session_headers = []


def _text(text):
    return {"content": [{"type": "text", "text": text}]}


def _stub_handler(stub):
    class Handler(BaseHTTPRequestHandler):
        def do_POST(self):
            body = json.loads(self.rfile.read(int(self.headers["Content-Length"])))
            self_session = self.headers.get("Mcp-Session-Id")
            if "id" not in body:
                stub.notifications.append(body["method"])
                stub.session_headers.append(self_session)
                self.send_response(202)
                self.send_header("Content-Length", "0")
                self.end_headers()
                return
            extra = {}
            if body["method"] == "initialize":
                result = {
                    "protocolVersion": body["params"]["protocolVersion"],
                    "serverInfo": {"name": "stub", "version": "0"},
                    "capabilities": {},
                }
                extra["Mcp-Session-Id"] = "stub-session"
            else:
                stub.calls.append(body["params"])
                stub.session_headers.append(self_session)
                result = stub.results[body["params"]["name"]]
            payload = json.dumps({"jsonrpc": "2.0", "id": body["id"], "result": result})
            if stub.sse:
                data = f"event: message\ndata: {payload}\n\n".encode()
                content_type = "text/event-stream"
            else:
                data = payload.encode()
                content_type = "application/json"
            self.send_response(200)
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(data)))
            for key, value in extra.items():
                self.send_header(key, value)
            self.end_headers()
            self.wfile.write(data)

        def log_message(self, format, *args):
            pass

    return Handler


def _serve(http_server):
    thread = threading.Thread(target=http_server.serve_forever, daemon=True)
    thread.start()
    return f"http://127.0.0.1:{http_server.server_address[1]}/mcp"


@pytest.fixture
def stub_url():
    servers = []

    def start(stub):
        http_server = ThreadingHTTPServer(("127.0.0.1", 0), _stub_handler(stub))
        servers.append(http_server)
        return _serve(http_server)

    yield start
    for http_server in servers:
        http_server.shutdown()
        http_server.server_close()


@pytest.fixture
def real_server():
    mcp_server, sessions = setup_server(ServerConfig(logging_enabled=False))
    http_server = make_http_server(mcp_server, 0)
    url = _serve(http_server)
    yield url, sessions
    http_server.shutdown()
    http_server.server_close()


def _closed_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_connect_parses_session_id(stub_url):
    stub = _Stub({"ssh_connect": _text("Connected. Session ID: abc-123")})
    client = MCPClient(stub_url(stub))
    password = "password"
    assert client.ssh_connect("host.example.com", 2222, "alice", password) == "abc-123"
    arguments = stub.calls[0]["arguments"]
    assert arguments["host"] == "host.example.com"
    assert arguments["port"] == 2222
    assert arguments["timeout"] == 10
    assert stub.notifications == ["notifications/initialized"]


def test_connect_without_session_id_fails(stub_url):
    stub = _Stub({"ssh_connect": _text("something else")})
    client = MCPClient(stub_url(stub))
    password = "password"
    with pytest.raises(MCPClientError, match="failed to get session ID from response"):
        client.ssh_connect("host.example.com", 22, "alice", password)


def test_session_header_is_sent_back(stub_url):
    stub = _Stub({"ssh_disconnect": _text("Disconnected session: s1")})
    client = MCPClient(stub_url(stub))
    client.ssh_disconnect("s1")
    assert client.session_id == "stub-session"
    assert stub.session_headers == ["stub-session", "stub-session"]


def test_execute_returns_text_over_event_stream(stub_url):
    stub = _Stub({"ssh_execute": _text("hello\n")}, sse=True)
    client = MCPClient(stub_url(stub))
    assert client.ssh_execute_command("s1", "echo hello") == "hello\n"
    assert stub.calls[0]["arguments"] == {"sessionId": "s1", "command": "echo hello", "timeout": 30}


def test_execute_without_text_fails(stub_url):
    stub = _Stub({"ssh_execute": {"content": []}})
    client = MCPClient(stub_url(stub))
    with pytest.raises(MCPClientError, match="failed to get command output from response"):
        client.ssh_execute_command("s1", "true")


def test_transfer_payloads(stub_url):
    done = _text("ok")
    stub = _Stub(
        {
            "ssh_upload_file": done,
            "ssh_download_file": done,
            "ssh_upload_directory": done,
            "ssh_download_directory": done,
            "ssh_list_directory": _text("listing"),
        }
    )
    client = MCPClient(stub_url(stub))
    client.ssh_upload_file("s1", "/tmp/a", "/remote/a")
    client.ssh_download_file("s1", "/remote/b", "/tmp/b")
    client.ssh_upload_dir("s1", "/tmp/d", "/remote/d")
    client.ssh_download_dir("s1", "/remote/e", "/tmp/e")
    assert client.ssh_list_directory("s1", "/remote") == "listing"
    names = [call["name"] for call in stub.calls]
    assert names == [
        "ssh_upload_file",
        "ssh_download_file",
        "ssh_upload_directory",
        "ssh_download_directory",
        "ssh_list_directory",
    ]
    assert stub.calls[0]["arguments"]["direction"] == "upload"
    assert stub.calls[1]["arguments"]["direction"] == "download"
    assert stub.calls[3]["arguments"]["isDirectory"] is True
    assert stub.calls[4]["arguments"] == {"sessionId": "s1", "path": "/remote"}


def test_real_server_initialises(real_server):
    url, _ = real_server
    client = MCPClient(url)
    assert client.server_info == {"name": "ssh-mcp", "version": "0.1.0"}
    assert client.session_id


def test_real_server_list_sessions(real_server):
    url, sessions = real_server
    sessions.add_session("xyz", None, "host.example.com", "bob")
    client = MCPClient(url)
    text = client.call_tool("ssh_list_sessions")["content"][0]["text"]
    assert "- ID: xyz\n" in text


def test_real_server_unknown_session(real_server):
    url, _ = real_server
    client = MCPClient(url)
    with pytest.raises(MCPClientError, match="session not found"):
        client.ssh_disconnect("missing")
    with pytest.raises(MCPClientError, match="session not found"):
        client.ssh_execute_command("missing", "ls")


def test_real_server_connection_refused(real_server):
    url, _ = real_server
    client = MCPClient(url)
    password = "password"
    with pytest.raises(MCPClientError, match="failed to connect to SSH server"):
        client.ssh_connect("127.0.0.1", _closed_port(), "testuser", password)


def test_unreachable_server():
    with pytest.raises(MCPClientError, match="failed to reach MCP server"):
        MCPClient(f"http://127.0.0.1:{_closed_port()}/mcp", timeout=5)