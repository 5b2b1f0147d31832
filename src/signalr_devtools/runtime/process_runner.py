"""Run-to-completion execution of short-lived commands (git, node, bundler).

signalr-devtools runtime module

Every child gets its own session (POSIX) or process group (Windows), so
stopping it also stops whatever it spawned. When the awaiting task is
cancelled the group is stopped in two steps: SIGTERM, then SIGKILL after
``term_timeout``. The cleanup runs shielded and cannot be skipped by a
second cancellation.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import ExternalProcessError

__all__ = [
    "IS_WINDOWS",
    "ProcessResult",
    "ProcessRunner",
    "ProcessSpec",
    "build_subprocess_kwargs",
    "signal_process_group",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0
READ_SIZE = 4096

StderrCallback = Callable[[bytes], None]


@dataclass(frozen=True)
class ProcessSpec:
    """What to run.

    Attributes:
        argv: Executable followed by its arguments
        cwd: Working directory (None = inherit parent)
        env: Full environment (None = inherit parent)
        stdin_bytes: Data fed to stdin, which is then closed
    """

    argv: list[str]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    stdin_bytes: bytes | None = None


@dataclass(frozen=True)
class ProcessResult:
    """Exit code and captured output of a finished command."""

    argv: list[str]
    returncode: int
    stdout: bytes
    stderr: bytes

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")


def build_subprocess_kwargs(env: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Keyword arguments that put the child in its own group."""
    kwargs: dict[str, Any] = {}
    if env is not None:
        kwargs["env"] = dict(env)
    if IS_WINDOWS:
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        kwargs["start_new_session"] = True
    return kwargs


def signal_process_group(process: asyncio.subprocess.Process, *, force: bool = False) -> None:
    """Ask the child's group to stop, or kill it when ``force`` is set.

    On POSIX the signal goes to the whole group, falling back to the single
    process when the group cannot be signalled. On Windows a graceful stop is
    a CTRL_BREAK_EVENT.

    Raises:
        ProcessLookupError: If the process has already exited
    """
    if IS_WINDOWS:
        if force:
            process.kill()
            return
        try:
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
        except OSError as e:
            logger.debug(f"CTRL_BREAK_EVENT to pid={process.pid} failed ({e}), using terminate()")
            process.terminate()
        return

    sig = signal.SIGKILL if force else signal.SIGTERM
    try:
        # start_new_session makes the child its own group leader
        os.killpg(os.getpgid(process.pid), sig)
    except ProcessLookupError:
        raise
    except OSError as e:
        logger.debug(f"killpg({process.pid}) failed ({e}), signalling the process only")
        process.send_signal(sig)
        return
    logger.debug(f"Sent {sig.name} to group of pid={process.pid}")


async def _read_all(
    reader: asyncio.StreamReader | None,
    on_chunk: StderrCallback | None = None,
) -> bytes:
    if reader is None:
        return b""
    buffer = bytearray()
    while chunk := await reader.read(READ_SIZE):
        buffer += chunk
        if on_chunk is not None:
            on_chunk(chunk)
    return bytes(buffer)


@dataclass
class ProcessRunner:
    """Runs commands to completion and captures their output.

    Long-running servers go through
    :class:`~signalr_devtools.runtime.launcher.ProcessLauncher` instead.

    Example:
        result = await ProcessRunner().execute(
            ProcessSpec(argv=["git", "status", "--porcelain"], cwd=Path("docs"))
        )
        print(result.stdout_text())
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT

    async def execute(
        self,
        spec: ProcessSpec,
        *,
        check: bool = True,
        on_stderr: StderrCallback | None = None,
    ) -> ProcessResult:
        """Run the command and wait for it.

        Args:
            spec: Command to run
            check: Raise when the exit code is non-zero
            on_stderr: Called with each stderr chunk as it arrives

        Raises:
            ExternalProcessError: If the command cannot be started, or exits
                non-zero while ``check`` is set
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                stdin=asyncio.subprocess.DEVNULL if spec.stdin_bytes is None else asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=spec.cwd,
                **build_subprocess_kwargs(spec.env),
            )
        except OSError as e:
            raise ExternalProcessError(
                spec.argv,
                message=f"failed to start {spec.argv[0]}: {e}",
            ) from e

        logger.debug(f"Running {spec.argv[0]} pid={process.pid} cwd={spec.cwd}")

        try:
            stdout, stderr, _ = await asyncio.gather(
                _read_all(process.stdout),
                _read_all(process.stderr, on_stderr),
                self._feed_stdin(process, spec.stdin_bytes),
            )
            returncode = await process.wait()
        finally:
            if process.returncode is None:
                await self._stop_shielded(process)

        logger.debug(f"{spec.argv[0]} pid={process.pid} exited with {returncode}")
        result = ProcessResult(list(spec.argv), returncode, stdout, stderr)
        if check and not result.ok:
            raise ExternalProcessError(spec.argv, returncode, stderr)
        return result

    @staticmethod
    async def _feed_stdin(process: asyncio.subprocess.Process, data: bytes | None) -> None:
        if data is None or process.stdin is None:
            return
        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug(f"pid={process.pid} closed stdin early")
        finally:
            process.stdin.close()

    async def _stop_shielded(self, process: asyncio.subprocess.Process) -> None:
        stop = asyncio.ensure_future(self._stop(process))
        try:
            await asyncio.shield(stop)
        except asyncio.CancelledError:
            await stop
            raise

    async def _stop(self, process: asyncio.subprocess.Process) -> None:
        for force, timeout in ((False, self.term_timeout), (True, self.kill_timeout)):
            try:
                signal_process_group(process, force=force)
            except ProcessLookupError:
                return
            except OSError as e:
                logger.warning(f"Could not signal pid={process.pid}: {e}")
                return
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                continue
            logger.debug(f"Stopped pid={process.pid} returncode={process.returncode}")
            return
        logger.warning(f"pid={process.pid} still alive after SIGKILL")
