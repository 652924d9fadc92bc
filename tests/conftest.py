"""Fixtures compartidos: servidor falso por STDIO y logger en tmp."""

import sys
from pathlib import Path

import pytest

from weather_host.host.config import HostConfig, ServerConfig
from weather_host.host.logging_mcp import MCPLogger

FAKE_SERVER = Path(__file__).parent / "fake_server.py"


def fake_server_config(mode: str = "normal") -> ServerConfig:
    return ServerConfig(
        name=f"fake-{mode}",
        command=sys.executable,
        args=["-u", str(FAKE_SERVER)],
        env={"FAKE_SERVER_MODE": mode},
        ready_banner="Weather MCP Server running",
    )


def fake_host_config(mode: str = "normal", **overrides) -> HostConfig:
    values = dict(ready_timeout=10.0, request_timeout=10.0, shutdown_grace=0.0)
    values.update(overrides)
    return HostConfig(server=fake_server_config(mode), **values)


@pytest.fixture
def mcp_logger(tmp_path: Path) -> MCPLogger:
    return MCPLogger(str(tmp_path / "logs" / "mcp_interactions.log"))
