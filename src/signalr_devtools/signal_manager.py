"""信号管理模块。

把进程收到的 SIGINT / SIGTERM 转换为对子进程的操作：

- 第一个信号：调用 on_shutdown（通常是 guard.release），并唤醒 wait_for_shutdown()
- 关闭过程中再次按下 Ctrl+C（在 SRD_SIGINT_DOUBLE_TAP_WINDOW 秒内）：调用 on_force

退出码按 shell 惯例为 128 + 第一个信号的编号。
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable, Optional

from .config import get_config

__all__ = ["SignalManager"]

logger = logging.getLogger(__name__)

Callback = Callable[[], object]


class SignalManager:
    """在事件循环上安装 SIGINT/SIGTERM 处理器。

    Example:
        ```python
        async with ChildProcessGuard(handle) as guard:
            manager = SignalManager(on_shutdown=guard.release, on_force=guard.force)
            await manager.start()
            try:
                await manager.wait_for_shutdown()
            finally:
                await manager.stop()
        ```
    """

    def __init__(
        self,
        on_shutdown: Optional[Callback] = None,
        on_force: Optional[Callback] = None,
        double_tap_window: Optional[float] = None,
    ) -> None:
        """
        Args:
            on_shutdown: 第一次收到信号时调用
            on_force: 双击 Ctrl+C 时调用
            double_tap_window: 双击窗口（秒），None 时读取配置
        """
        if double_tap_window is None:
            double_tap_window = get_config().sigint_double_tap_window
        self.double_tap_window = double_tap_window
        self._callbacks: dict[str, Optional[Callback]] = {
            "shutdown": on_shutdown,
            "force": on_force,
        }

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._installed: list[int] = []
        self._previous_handler = None
        self._last_sigint_time = float("-inf")
        self._shutdown_requested = False
        self._force_exit = False
        self._received_signal: Optional[int] = None

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        return self._force_exit

    @property
    def received_signal(self) -> Optional[int]:
        return self._received_signal

    @property
    def exit_code(self) -> Optional[int]:
        """128 + 第一个信号的编号；没有收到信号时为 None。"""
        if self._received_signal is None:
            return None
        return 128 + self._received_signal

    async def start(self) -> None:
        """安装处理器。必须在运行中的事件循环内调用。"""
        if self._loop is not None:
            logger.warning("SignalManager already running")
            return

        loop = asyncio.get_running_loop()
        self._loop = loop
        self._shutdown_event = asyncio.Event()

        if sys.platform == "win32":
            # Windows 事件循环不支持 add_signal_handler，只处理 Ctrl+C
            self._previous_handler = signal.signal(
                signal.SIGINT,
                lambda signum, frame: loop.call_soon_threadsafe(self._handle_sigint),
            )
            self._installed = [signal.SIGINT]
        else:
            handlers = {signal.SIGINT: self._handle_sigint, signal.SIGTERM: self._handle_sigterm}
            for signum, handler in handlers.items():
                loop.add_signal_handler(signum, handler)
            self._installed = list(handlers)

        logger.debug(
            f"Handling {[signal.Signals(s).name for s in self._installed]} "
            f"(double_tap_window={self.double_tap_window}s)"
        )

    async def stop(self) -> None:
        """卸载处理器。可重复调用。"""
        loop, self._loop = self._loop, None
        if loop is None:
            return

        installed, self._installed = self._installed, []
        try:
            if sys.platform == "win32":
                signal.signal(signal.SIGINT, self._previous_handler)
            else:
                for signum in installed:
                    loop.remove_signal_handler(signum)
        except (OSError, RuntimeError, ValueError) as e:
            logger.debug(f"Could not restore signal handlers: {e}")

    async def wait_for_shutdown(self) -> None:
        """阻塞直到收到关闭请求。"""
        if self._shutdown_event is not None:
            await self._shutdown_event.wait()

    def request_graceful_shutdown(self) -> None:
        """不经过信号的关闭请求（不影响 exit_code）。"""
        if not self._shutdown_requested:
            logger.info("Shutdown requested")
            self._begin_shutdown(None)

    def _handle_sigint(self) -> None:
        now = time.monotonic()
        elapsed, self._last_sigint_time = now - self._last_sigint_time, now

        if not self._shutdown_requested:
            logger.info("Interrupted, stopping child")
            self._begin_shutdown(signal.SIGINT)
        elif elapsed < self.double_tap_window:
            logger.warning("Second Ctrl+C, killing child")
            self._force_exit = True
            self._fire("force")
        else:
            logger.info(f"Already stopping. Press Ctrl+C twice within {self.double_tap_window}s to kill.")

    def _handle_sigterm(self) -> None:
        if self._shutdown_requested:
            logger.debug("Ignoring SIGTERM, already stopping")
            return
        logger.info("Terminated, stopping child")
        self._begin_shutdown(signal.SIGTERM)

    def _begin_shutdown(self, signum: Optional[int]) -> None:
        self._shutdown_requested = True
        if signum is not None and self._received_signal is None:
            self._received_signal = int(signum)
        self._fire("shutdown")

    def _fire(self, name: str) -> None:
        callback = self._callbacks[name]
        if callback is not None:
            try:
                callback()
            except Exception as e:
                logger.warning(f"{name} callback failed: {e}")

        if self._shutdown_event is not None and self._loop is not None:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)
