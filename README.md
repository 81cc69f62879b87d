# sshmcp

A Model Context Protocol (MCP) server. It lets an MCP client open SSH
connections, run commands, copy files and directories over SCP, and list
remote directories. SSH is handled by paramiko.

## Installation

```
pip install .
```

## Running the server

By default the server uses HTTP. It listens on port 8081 on all interfaces
and answers JSON-RPC `POST` requests at `/mcp`:

```
sshmcp
```

To use newline-delimited JSON-RPC over standard input and output:

```
sshmcp --transport stdio
```

`-t` and `-transport` are accepted as well as `--transport`. The value
`http` selects HTTP; any other value selects stdio. Log messages go to
standard error.

## Tools

| Tool                     | Arguments                                                      |
|--------------------------|----------------------------------------------------------------|
| `ssh_connect`            | `host`, `port` (default 22), `username`, `password`, `keyPath` |
| `ssh_execute`            | `sessionId`, `command`, `timeout`                              |
| `ssh_disconnect`         | `sessionId`                                                    |
| `ssh_list_sessions`      | none                                                           |
| `ssh_upload_file`        | `sessionId`, `source`, `destination`                           |
| `ssh_download_file`      | `sessionId`, `source`, `destination`                           |
| `ssh_list_directory`     | `sessionId`, `path`                                            |
| `ssh_upload_directory`   | `sessionId`, `source`, `destination`                           |
| `ssh_download_directory` | `sessionId`, `source`, `destination`                           |

- `ssh_connect` uses the password if one is given. Otherwise it loads the
  private key at `keyPath` as an RSA, ECDSA or Ed25519 key. It returns the
  text `Connected. Session ID: <id>`. Pass that id as `sessionId` to the
  other tools.
- `ssh_execute` returns the command's standard output. A non-zero exit
  status is reported as an error. Commands time out after 30 seconds. The
  `timeout` argument appears in the tool's schema, but the handler does not
  read it.
- `ssh_upload_directory` copies the directory itself into `destination`. If
  `source` ends with a slash, it copies only the directory's contents.
  Symbolic links are followed.
- `ssh_download_directory` writes the remote directory's contents into
  `destination` and creates that directory if it does not exist.
- `ssh_list_directory` runs `ls -la` on the remote host. Each line of the
  result shows permissions, size, date and name. Directory names end with `/`.

A failed tool call comes back as a JSON-RPC error. Its message names the
cause, for example `session not found`. Sessions left idle for 30 minutes
are closed. The check for idle sessions runs every 5 minutes.

## Using the server from Python

`sshmcp.mcp_client.MCPClient` connects to a running HTTP server and
initialises the MCP session. It has one method per tool:

```python
from sshmcp.mcp_client import MCPClient

password = "password"
client = MCPClient("http://localhost:8081/mcp")
session_id = client.ssh_connect("host.example.com", 22, "testuser", password)
print(client.ssh_execute_command(session_id, "ls -la"))
client.ssh_upload_file(session_id, "local.txt", "/home/testuser/remote.txt")
client.ssh_download_dir(session_id, "/home/testuser/data", "data")
client.ssh_disconnect(session_id)
```

`MCPClient.call_tool(name, arguments)` calls any tool and returns its raw
result. Failures are raised as `MCPClientError`. When the server reported
an error, its JSON-RPC error code is in `code`.

The server can also be built and run in-process:

```python
from sshmcp.server import ServerConfig, setup_server, start_stdio_server

server, sessions = setup_server(ServerConfig(logging_enabled=False))
start_stdio_server(server)
```

`MCPServer.handle_message` takes one decoded JSON-RPC message or a batch
and returns the reply. For notifications it returns `None`.
`make_http_server` returns an unstarted `ThreadingHTTPServer`.

## Security controls

`sshmcp.security.SecurityManager` applies a `SecurityConfig`:

- Host allow and deny lists. Entries can be exact names, `*.domain`
  wildcards or CIDR ranges. A `:port` suffix on the host is ignored.
- Command allow and deny lists, matched by prefix.
- An optional rate limit per session, in seconds.

When the allow lists are empty, everything not denied is allowed. The server
built by `setup_server` uses no host or command lists. It applies
`ServerConfig.rate_limit`, which is 0 (off) by default.

## Limitations

- Host keys are not verified. Any key the server presents is accepted.
- The HTTP transport answers `POST /mcp` only, with a plain JSON reply. It
  does not stream server-sent events and rejects `GET` with 405. It has no
  TLS and no authentication of its own.
- The command line has no options for port, rate limit or host and command
  rules. Set these through `ServerConfig` and `SecurityConfig` from Python.

## Running the tests

```
pip install .[test]
pytest
```