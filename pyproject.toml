[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sshmcp"
version = "0.1.0"
description = "Model Context Protocol server exposing SSH command execution, SCP file transfer and directory listing tools"
requires-python = ">=3.10"
keywords = ["ssh", "scp", "mcp", "model-context-protocol", "remote-execution"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
    "Topic :: System :: Networking",
]
dependencies = [
    "paramiko",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
sshmcp = "sshmcp.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["sshmcp"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
