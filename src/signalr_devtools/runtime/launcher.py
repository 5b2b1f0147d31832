"""Long-running child process launcher.

signalr-devtools runtime module

Starts exactly one external process per handle (a dev server, typically),
exposes its output as an asynchronous sequence of chunks and lets the owner
request termination. The handle never outlives its owner when it is used
through :class:`~signalr_devtools.runtime.guard.ChildProcessGuard`.

Key design points:
- Output is read in opaque chunks, not lines; each chunk is delivered once
- A bounded queue sits between the pipes and the consumer, so a slow consumer
  pushes back on the child instead of buffering without limit
- Spawn failures are reported as an error chunk, never raised from launch()
- terminate() is a single-shot request; it does not wait for the child
"""

from __future__ import annotations

import asyncio
import logging
import shlex
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import anyio

from .process_runner import build_subprocess_kwargs, signal_process_group

__all__ = [
    "ChildProcessHandle",
    "LaunchSpec",
    "OutputChunk",
    "OutputStream",
    "ProcessLauncher",
    "ProcessState",
]

logger = logging.getLogger(__name__)

DEFAULT_READ_SIZE = 4096
DEFAULT_QUEUE_SIZE = 64

_EOF = object()


class OutputStream(Enum):
    """Which child pipe a chunk came from."""

    STDOUT = "stdout"
    STDERR = "stderr"


class ProcessState(Enum):
    """Lifecycle of a child handle: RUNNING -> TERMINATED, never back."""

    RUNNING = "running"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class OutputChunk:
    """One read from a child pipe.

    Attributes:
        stream: Source pipe
        data: Raw bytes as delivered by the pipe
        is_error: True for the synthetic chunk reporting a spawn failure
    """

    stream: OutputStream
    data: bytes
    is_error: bool = False


@dataclass(frozen=True)
class LaunchSpec:
    """Command and arguments of a child to launch.

    Attributes:
        command: Executable name, resolved on PATH
        arguments: Ordered arguments (may be empty)
        cwd: Working directory (None = inherit parent)
        env: Environment variables (None = inherit parent)
    """

    command: str
    arguments: Sequence[str] = ()
    cwd: Path | None = None
    env: Mapping[str, str] | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.command or not self.command.strip():
            raise ValueError("command must be a non-empty executable name")
        object.__setattr__(self, "arguments", tuple(self.arguments))

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.arguments]

    def __str__(self) -> str:
        return shlex.join(self.argv)


class ChildProcessHandle:
    """Ownership handle of one spawned child.

    Created by :meth:`ProcessLauncher.launch`. The handle is the only thing
    that can terminate the child; once it reaches ``TERMINATED`` it is never
    reused.

    Example:
        handle = await ProcessLauncher().launch(LaunchSpec("echo", ["hello"]))
        async for chunk in handle.chunks():
            print(chunk.stream, chunk.data)
        await handle.wait()
    """

    def __init__(
        self,
        spec: LaunchSpec,
        process: asyncio.subprocess.Process | None = None,
        *,
        error: OSError | None = None,
        read_size: int = DEFAULT_READ_SIZE,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._spec = spec
        self._process = process
        self._error = error
        self._terminate_requested = False
        self._kill_requested = False
        self._consumed = False
        self._done = asyncio.Event()
        self._supervisor: asyncio.Task[None] | None = None

        if process is None:
            self._state = ProcessState.TERMINATED
            self._queue: asyncio.Queue[object] = asyncio.Queue()
            message = f"failed to start {spec.command}: {error}\n"
            self._queue.put_nowait(
                OutputChunk(OutputStream.STDERR, message.encode("utf-8"), is_error=True)
            )
            self._queue.put_nowait(_EOF)
            self._done.set()
        else:
            self._state = ProcessState.RUNNING
            self._queue = asyncio.Queue(maxsize=max(1, queue_size))
            self._supervisor = asyncio.create_task(
                self._supervise(process, read_size),
                name=f"child-{process.pid}",
            )

    def __repr__(self) -> str:
        return (
            f"ChildProcessHandle(argv={self._spec.argv[0]}, "
            f"pid={self.pid}, "
            f"state={self._state.value}, "
            f"returncode={self.returncode})"
        )

    @property
    def spec(self) -> LaunchSpec:
        return self._spec

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def error(self) -> OSError | None:
        """Spawn error, None if the child was started."""
        return self._error

    @property
    def terminate_requested(self) -> bool:
        return self._terminate_requested

    @property
    def exited(self) -> bool:
        """Whether the child has been reaped (or never started)."""
        return self._done.is_set()

    async def chunks(
        self,
        *,
        cancel_scope: anyio.CancelScope | None = None,
    ) -> AsyncIterator[OutputChunk]:
        """Yield output chunks until both pipes are closed.

        Args:
            cancel_scope: Optional anyio.CancelScope; iteration stops before
                the next read once it has been cancelled. A consumer blocked
                waiting for output is only interrupted when it runs inside
                the scope (``with cancel_scope:``)

        Raises:
            RuntimeError: If the output has already been consumed
        """
        if self._consumed:
            raise RuntimeError("child output can only be consumed once")
        self._consumed = True

        # A cancelled scope leaves undelivered chunks in the queue
        while not (cancel_scope and cancel_scope.cancel_called):
            item = await self._queue.get()
            if item is _EOF:
                return
            yield item  # type: ignore[misc]

    async def wait(self) -> int | None:
        """Wait for the child to be reaped and return its exit code.

        The output must be drained concurrently, otherwise a chatty child
        blocks on its full pipe and never exits.
        """
        await self._done.wait()
        return self.returncode

    def terminate(self) -> bool:
        """Request termination of the child.

        Single-shot: only the first call on a live child sends a signal.

        Returns:
            True if a termination request was sent
        """
        if self._terminate_requested:
            return False
        return self._send(force=False)

    def kill(self) -> bool:
        """Force-kill the child's process group.

        Returns:
            True if a kill request was sent
        """
        if self._kill_requested:
            return False
        return self._send(force=True)

    async def close(self) -> None:
        """Stop reading the child's pipes."""
        if self._supervisor and not self._supervisor.done():
            self._supervisor.cancel()
            try:
                await self._supervisor
            except asyncio.CancelledError:
                pass

    def _send(self, *, force: bool) -> bool:
        process = self._process
        if process is None or process.returncode is not None:
            return False

        try:
            signal_process_group(process, force=force)
        except ProcessLookupError:
            logger.debug(f"Child already exited pid={process.pid}")
            return False
        except OSError as e:
            logger.warning(f"Error signalling child pid={process.pid}: {e}")
            return False

        if force:
            self._kill_requested = True
        self._terminate_requested = True
        self._state = ProcessState.TERMINATED
        logger.debug(
            f"{'Kill' if force else 'Terminate'} requested for child pid={process.pid}"
        )
        return True

    async def _supervise(
        self,
        process: asyncio.subprocess.Process,
        read_size: int,
    ) -> None:
        try:
            await asyncio.gather(
                self._pump(process.stdout, OutputStream.STDOUT, read_size),
                self._pump(process.stderr, OutputStream.STDERR, read_size),
            )
            await process.wait()
            logger.debug(
                f"Child completed pid={process.pid} "
                f"returncode={process.returncode}"
            )
        finally:
            self._state = ProcessState.TERMINATED
            self._done.set()

        await self._queue.put(_EOF)

    async def _pump(
        self,
        reader: asyncio.StreamReader | None,
        stream: OutputStream,
        read_size: int,
    ) -> None:
        if reader is None:
            return
        while True:
            data = await reader.read(read_size)
            if not data:
                break
            await self._queue.put(OutputChunk(stream, data))


@dataclass
class ProcessLauncher:
    """Spawns children in their own session/process group.

    Attributes:
        read_size: Maximum bytes per output chunk
        queue_size: Chunks buffered before the child is pushed back on
    """

    read_size: int = DEFAULT_READ_SIZE
    queue_size: int = DEFAULT_QUEUE_SIZE

    async def launch(self, spec: LaunchSpec) -> ChildProcessHandle:
        """Start the child and return its handle.

        Never raises for a command that cannot be resolved or started; the
        returned handle is already terminated and its output holds one error
        chunk.
        """
        kwargs = build_subprocess_kwargs(spec.env)

        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=spec.cwd,
                **kwargs,
            )
        except OSError as e:
            logger.debug(f"Failed to spawn {spec.command}: {e}")
            return ChildProcessHandle(spec, error=e)

        logger.debug(
            f"Started child pid={process.pid} "
            f"argv={spec.command} cwd={spec.cwd}"
        )
        return ChildProcessHandle(
            spec,
            process,
            read_size=self.read_size,
            queue_size=self.queue_size,
        )
