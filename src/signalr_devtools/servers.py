"""Dev server launch presets."""

from __future__ import annotations

from pathlib import Path

from .config import Config
from .runtime import LaunchSpec

__all__ = [
    "DEMO_SERVER_PROJECT",
    "TEST_SERVER_PROJECT",
    "SERVERS",
    "server_spec",
]

DEMO_SERVER_PROJECT = "./demo/Server/Server.fsproj"
TEST_SERVER_PROJECT = "./tests/Fable.SignalR.TestServer/Fable.SignalR.TestServer.fsproj"

# 名称 -> 项目文件
SERVERS: dict[str, str] = {
    "demo": DEMO_SERVER_PROJECT,
    "test": TEST_SERVER_PROJECT,
}


def server_spec(name: str, config: Config) -> LaunchSpec:
    """Build the `dotnet run` launch spec for a named server.

    Raises:
        KeyError: If the server name is unknown
    """
    project = SERVERS[name]
    return LaunchSpec(
        command=config.dotnet,
        arguments=("run", "-p", project),
        cwd=Path(config.project_root),
    )
