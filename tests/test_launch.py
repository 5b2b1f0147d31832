"""run_launcher 测试。

测试前台运行子进程的完整流程：
- 正常退出时返回子进程退出码
- 无法启动时返回 127
- 子进程被信号杀死时返回 128 + signum
- 收到 SIGINT / SIGTERM 时终止子进程并返回 128 + signum
"""

from __future__ import annotations

import asyncio
import io
import os
import signal
import sys
from pathlib import Path

import pytest

from signalr_devtools.launch import SPAWN_FAILED_EXIT_CODE, run_launcher
from signalr_devtools.runtime import LaunchSpec

IS_WINDOWS = sys.platform == "win32"


def fake_spec(fake_server: list[str], *args: str) -> LaunchSpec:
    return LaunchSpec(fake_server[0], [*fake_server[1:], *args])


class SignalOnReady(io.BytesIO):
    """子进程输出 "ready" 后向本进程发送一次指定信号。"""

    def __init__(self, signum: int) -> None:
        super().__init__()
        self.signum = signum
        self.sent = False

    def write(self, data: bytes) -> int:
        written = super().write(data)
        if not self.sent and b"ready" in self.getvalue():
            self.sent = True
            os.kill(os.getpid(), self.signum)
        return written


class TestRunLauncher:
    """run_launcher 基本行为。"""

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_natural_exit_returns_child_code(self, fake_server):
        out, err = io.BytesIO(), io.BytesIO()

        code = await run_launcher(
            fake_spec(fake_server, "--lines", "3", "--stderr", "bye\n", "--exit-code", "4"),
            stdout=out,
            stderr=err,
            install_signal_handlers=False,
        )

        assert code == 4
        assert out.getvalue() == b"line0\nline1\nline2\n"
        assert err.getvalue() == b"bye\n"

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_success_returns_zero(self, fake_server):
        code = await run_launcher(
            fake_spec(fake_server, "--lines", "1"),
            stdout=io.BytesIO(),
            stderr=io.BytesIO(),
            install_signal_handlers=False,
        )
        assert code == 0

    @pytest.mark.asyncio
    async def test_spawn_failure_returns_127(self):
        out, err = io.BytesIO(), io.BytesIO()

        code = await run_launcher(
            LaunchSpec("definitely-not-a-real-binary-xyz"),
            stdout=out,
            stderr=err,
            install_signal_handlers=False,
        )

        assert code == SPAWN_FAILED_EXIT_CODE
        assert out.getvalue() == b""
        assert b"definitely-not-a-real-binary-xyz" in err.getvalue()

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_logs_starting_server(self, fake_server, caplog):
        with caplog.at_level("INFO", logger="signalr_devtools"):
            await run_launcher(
                fake_spec(fake_server, "--lines", "1"),
                stdout=io.BytesIO(),
                stderr=io.BytesIO(),
                install_signal_handlers=False,
            )

        assert "Starting server..." in caplog.messages

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_custom_description(self, fake_server, caplog):
        with caplog.at_level("INFO", logger="signalr_devtools"):
            await run_launcher(
                fake_spec(fake_server, "--lines", "1"),
                stdout=io.BytesIO(),
                stderr=io.BytesIO(),
                install_signal_handlers=False,
                description="test bundler",
            )

        assert "Starting test bundler..." in caplog.messages

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX signals")
    async def test_child_killed_by_signal(self):
        """被 SIGKILL 杀死的子进程返回 137，而不是负数。"""
        code = await run_launcher(
            LaunchSpec(
                sys.executable,
                ["-c", "import os, signal; os.kill(os.getpid(), signal.SIGKILL)"],
            ),
            stdout=io.BytesIO(),
            stderr=io.BytesIO(),
            install_signal_handlers=False,
        )

        assert code == 137


@pytest.mark.skipif(IS_WINDOWS, reason="POSIX signal delivery")
class TestRunLauncherSignals:
    """信号驱动的关闭。"""

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    @pytest.mark.parametrize(
        ("signum", "expected"),
        [(signal.SIGINT, 130), (signal.SIGTERM, 143)],
        ids=["sigint", "sigterm"],
    )
    async def test_signal_terminates_child(
        self, fake_server, tmp_path: Path, signum, expected
    ):
        marker = tmp_path / "signal.txt"
        out = SignalOnReady(signum)

        code = await run_launcher(
            fake_spec(fake_server, "--serve", "--marker", str(marker)),
            stdout=out,
            stderr=io.BytesIO(),
            shutdown_wait=5.0,
        )

        assert code == expected
        assert out.sent is True
        # 无论父进程收到哪个信号，子进程都收到 SIGTERM
        assert marker.read_text() == "SIGTERM"

    @pytest.mark.asyncio
    @pytest.mark.timeout(20)
    async def test_handlers_removed_after_run(self, fake_server):
        await run_launcher(
            fake_spec(fake_server, "--lines", "1"),
            stdout=io.BytesIO(),
            stderr=io.BytesIO(),
        )
        loop = asyncio.get_running_loop()
        assert loop.remove_signal_handler(signal.SIGINT) is False
        assert loop.remove_signal_handler(signal.SIGTERM) is False
