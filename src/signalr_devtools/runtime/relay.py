"""Forward child output to the parent's standard streams."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import BinaryIO

import anyio

from .launcher import ChildProcessHandle, OutputStream

__all__ = ["RelayStats", "relay_output"]

logger = logging.getLogger(__name__)


@dataclass
class RelayStats:
    """Chunk and byte counts per stream."""

    stdout_chunks: int = 0
    stdout_bytes: int = 0
    stderr_chunks: int = 0
    stderr_bytes: int = 0
    errors: int = 0


async def relay_output(
    handle: ChildProcessHandle,
    stdout: BinaryIO | None = None,
    stderr: BinaryIO | None = None,
    *,
    cancel_scope: anyio.CancelScope | None = None,
) -> RelayStats:
    """Write every chunk of the child's output to the matching parent stream.

    Chunks are written unmodified and flushed one by one. Spawn-failure
    chunks go to stderr.

    Args:
        handle: Child whose output is drained
        stdout: Target for stdout chunks (default: sys.stdout.buffer)
        stderr: Target for stderr chunks (default: sys.stderr.buffer)
        cancel_scope: Optional anyio.CancelScope to stop relaying early

    Returns:
        RelayStats for the relayed output
    """
    out = stdout if stdout is not None else sys.stdout.buffer
    err = stderr if stderr is not None else sys.stderr.buffer
    stats = RelayStats()

    async for chunk in handle.chunks(cancel_scope=cancel_scope):
        if chunk.stream is OutputStream.STDOUT:
            out.write(chunk.data)
            out.flush()
            stats.stdout_chunks += 1
            stats.stdout_bytes += len(chunk.data)
        else:
            err.write(chunk.data)
            err.flush()
            stats.stderr_chunks += 1
            stats.stderr_bytes += len(chunk.data)
            if chunk.is_error:
                stats.errors += 1

    logger.debug(f"Relay finished for {handle.spec.command}: {stats}")
    return stats
