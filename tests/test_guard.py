"""ChildProcessGuard 测试。

测试作用域守卫：
- 所有退出路径都会终止子进程
- release() 只发送一次终止请求
- 真实子进程在作用域结束后被回收
"""

from __future__ import annotations

import asyncio
import sys
from unittest import mock

import pytest

from signalr_devtools.runtime import (
    ChildProcessGuard,
    LaunchSpec,
    ProcessLauncher,
)


def make_handle(exited: bool = False) -> mock.MagicMock:
    """构造一个假的 ChildProcessHandle。"""
    handle = mock.MagicMock()
    handle.spec = LaunchSpec("fake")
    handle.pid = 4242
    handle.exited = exited
    handle.terminate.return_value = True
    handle.kill.return_value = True
    handle.wait = mock.AsyncMock(return_value=0)
    handle.close = mock.AsyncMock()
    return handle


class TestGuardRelease:
    """release() 行为测试。"""

    def test_release_terminates_once(self):
        handle = make_handle()
        guard = ChildProcessGuard(handle)

        assert guard.release() is True
        assert guard.release() is False
        assert guard.release() is False

        handle.terminate.assert_called_once()
        assert guard.released is True

    def test_force_kills(self):
        handle = make_handle()
        guard = ChildProcessGuard(handle)

        guard.release()
        assert guard.force() is True
        handle.kill.assert_called_once()


class TestGuardScope:
    """作用域退出路径测试。"""

    @pytest.mark.asyncio
    async def test_normal_exit_terminates(self):
        handle = make_handle()

        async with ChildProcessGuard(handle):
            pass

        handle.terminate.assert_called_once()
        handle.wait.assert_awaited_once()
        handle.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exception_exit_terminates(self):
        handle = make_handle()

        with pytest.raises(RuntimeError):
            async with ChildProcessGuard(handle):
                raise RuntimeError("boom")

        handle.terminate.assert_called_once()
        handle.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_signal_then_exit_terminates_once(self):
        """信号触发 release 后，作用域退出不会再次终止。"""
        handle = make_handle()

        async with ChildProcessGuard(handle) as guard:
            guard.release()

        handle.terminate.assert_called_once()

    @pytest.mark.asyncio
    async def test_cancellation_terminates(self):
        handle = make_handle()
        entered = asyncio.Event()

        async def owner():
            async with ChildProcessGuard(handle):
                entered.set()
                await asyncio.sleep(60)

        task = asyncio.create_task(owner())
        await entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        handle.terminate.assert_called_once()
        handle.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exited_child_not_waited(self):
        handle = make_handle(exited=True)

        async with ChildProcessGuard(handle):
            pass

        handle.wait.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_slow_child_only_warns(self, caplog):
        """子进程未在 shutdown_wait 内退出时只记录警告。"""
        handle = make_handle()

        async def never():
            await asyncio.sleep(60)

        handle.wait = mock.AsyncMock(side_effect=never)

        with caplog.at_level("WARNING", logger="signalr_devtools.runtime.guard"):
            async with ChildProcessGuard(handle, shutdown_wait=0.1):
                pass

        assert "still running" in caplog.text
        handle.kill.assert_not_called()


class TestGuardRealProcess:
    """真实子进程测试。"""

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_child_reaped_after_scope(self, fake_server):
        handle = await ProcessLauncher().launch(
            LaunchSpec(fake_server[0], [*fake_server[1:], "--serve"])
        )

        async def consume():
            async for _ in handle.chunks():
                pass

        consumer = asyncio.create_task(consume())
        async with ChildProcessGuard(handle, shutdown_wait=5.0):
            await asyncio.sleep(0.2)

        assert handle.terminate_requested is True
        assert handle.returncode is not None
        consumer.cancel()
        try:
            await consumer
        except asyncio.CancelledError:
            pass
