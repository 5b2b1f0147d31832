"""Run one child process in the foreground.

包含子进程生命周期管理：启动、输出转发、信号处理和终止。
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import BinaryIO

import anyio

from .runtime import (
    ChildProcessGuard,
    LaunchSpec,
    ProcessLauncher,
    relay_output,
)
from .signal_manager import SignalManager

__all__ = ["SPAWN_FAILED_EXIT_CODE", "run_launcher"]

logger = logging.getLogger(__name__)

# 与 shell 的 "command not found" 一致
SPAWN_FAILED_EXIT_CODE = 127


async def run_launcher(
    spec: LaunchSpec,
    *,
    launcher: ProcessLauncher | None = None,
    stdout: BinaryIO | None = None,
    stderr: BinaryIO | None = None,
    shutdown_wait: float = 2.0,
    double_tap_window: float | None = None,
    install_signal_handlers: bool = True,
    description: str = "server",
) -> int:
    """启动子进程并转发其输出，直到子进程退出或收到关闭信号。

    使用并发任务架构：
    - relay_task: 转发子进程 stdout/stderr
    - shutdown_watcher: 监听 shutdown 事件

    收到 SIGINT/SIGTERM 后，guard 发送终止请求，继续转发剩余输出，
    最多等待 shutdown_wait 秒。

    Args:
        spec: 子进程规格
        launcher: 进程启动器（默认新建）
        stdout: stdout 转发目标（默认 sys.stdout.buffer）
        stderr: stderr 转发目标（默认 sys.stderr.buffer）
        shutdown_wait: 终止请求后等待子进程的时间（秒）
        double_tap_window: 双击 Ctrl+C 强制杀死的窗口时间（默认从配置读取）
        install_signal_handlers: 是否安装 SIGINT/SIGTERM 处理器
        description: 日志中的子进程名称（"Starting server..."）

    Returns:
        退出码：子进程的退出码；信号导致的关闭或子进程被信号杀死时
        为 128 + signum；无法启动时为 127
    """
    launcher = launcher or ProcessLauncher()
    logger.info(f"Starting {description}...")
    logger.debug(f"Command: {spec}")

    handle = await launcher.launch(spec)
    relay_task: asyncio.Task | None = None
    shutdown_watcher: asyncio.Task | None = None
    signal_manager: SignalManager | None = None

    async with ChildProcessGuard(handle, shutdown_wait=shutdown_wait) as guard:
        signal_manager = SignalManager(
            on_shutdown=guard.release,
            on_force=guard.force,
            double_tap_window=double_tap_window,
        )
        try:
            if install_signal_handlers:
                await signal_manager.start()

            relay_task = asyncio.create_task(
                relay_output(handle, stdout, stderr),
                name="output-relay",
            )
            shutdown_watcher = asyncio.create_task(
                signal_manager.wait_for_shutdown(),
                name="shutdown-watcher",
            )

            await asyncio.wait(
                {relay_task, shutdown_watcher},
                return_when=asyncio.FIRST_COMPLETED,
            )

            if not relay_task.done():
                # 关闭流程：guard 已发出终止请求，转发剩余输出
                with anyio.move_on_after(shutdown_wait):
                    await asyncio.shield(relay_task)
                if not relay_task.done():
                    logger.warning(f"{spec.command} did not close its output in {shutdown_wait}s")
            elif relay_task.exception() is None:
                await handle.wait()

        finally:
            for task in (shutdown_watcher, relay_task):
                if task and not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

            await signal_manager.stop()

    if relay_task and relay_task.done() and not relay_task.cancelled():
        # 转发中的异常（例如写 stdout 失败）向上抛出
        relay_task.result()

    if handle.error is not None:
        logger.error(f"Failed to start {spec.command}: {handle.error}")
        return SPAWN_FAILED_EXIT_CODE

    if signal_manager.exit_code is not None:
        logger.info(f"{spec.command} stopped by signal")
        return signal_manager.exit_code

    returncode = handle.returncode
    if returncode is None:
        return 1
    if returncode < 0:
        # asyncio 以 -signum 表示被信号杀死
        logger.info(f"{spec.command} killed by signal {-returncode}")
        return 128 - returncode
    logger.info(f"{spec.command} exited with code {returncode}")
    return returncode
