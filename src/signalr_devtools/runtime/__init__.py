"""Runtime module for child process management and output streaming.

This module provides isolated process execution with scoped termination
and chunk-level output relay for dev servers and build tools.
"""

from __future__ import annotations

from .guard import ChildProcessGuard
from .launcher import (
    ChildProcessHandle,
    LaunchSpec,
    OutputChunk,
    OutputStream,
    ProcessLauncher,
    ProcessState,
)
from .process_runner import ProcessResult, ProcessRunner, ProcessSpec
from .relay import RelayStats, relay_output

__all__ = [
    "ChildProcessGuard",
    "ChildProcessHandle",
    "LaunchSpec",
    "OutputChunk",
    "OutputStream",
    "ProcessLauncher",
    "ProcessResult",
    "ProcessRunner",
    "ProcessSpec",
    "ProcessState",
    "RelayStats",
    "relay_output",
]
