"""Scoped ownership of a launched child.

The guard is entered right after launch and terminates the child on every
exit path of the owning scope: normal return, exception and cancellation.
Signal handlers reach the same child through :meth:`ChildProcessGuard.release`,
so there is exactly one place that asks the child to stop.
"""

from __future__ import annotations

import asyncio
import logging
from types import TracebackType

from .launcher import ChildProcessHandle

__all__ = ["ChildProcessGuard"]

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_WAIT = 2.0


class ChildProcessGuard:
    """Async context manager that owns a child handle.

    Example:
        handle = await launcher.launch(spec)
        async with ChildProcessGuard(handle) as guard:
            signal_manager = SignalManager(on_shutdown=guard.release)
            ...
        # child has been asked to terminate here
    """

    def __init__(
        self,
        handle: ChildProcessHandle,
        *,
        shutdown_wait: float = DEFAULT_SHUTDOWN_WAIT,
    ) -> None:
        self.handle = handle
        self.shutdown_wait = shutdown_wait
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """Ask the child to terminate. Later calls are no-ops.

        Returns:
            True if this call sent the termination request
        """
        if self._released:
            return False
        self._released = True
        sent = self.handle.terminate()
        if sent:
            logger.info(f"Stopping {self.handle.spec.command} (pid={self.handle.pid})")
        return sent

    def force(self) -> bool:
        """Kill the child's process group."""
        self._released = True
        sent = self.handle.kill()
        if sent:
            logger.warning(f"Killing {self.handle.spec.command} (pid={self.handle.pid})")
        return sent

    async def __aenter__(self) -> "ChildProcessGuard":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
        try:
            await asyncio.shield(self._await_exit())
        finally:
            await self.handle.close()

    async def _await_exit(self) -> None:
        if self.handle.exited:
            return
        try:
            await asyncio.wait_for(self.handle.wait(), timeout=self.shutdown_wait)
        except asyncio.TimeoutError:
            logger.warning(
                f"{self.handle.spec.command} (pid={self.handle.pid}) still running "
                f"{self.shutdown_wait}s after terminate request"
            )
