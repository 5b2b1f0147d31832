"""Test bundler configuration and the post-compile snapshot hook.

After the test project is compiled, the Jest snapshot files that live next to
the F# sources have to be copied into the compiled output. The snapshot
package (``Fable.Jester.<version>``) ships the copier; it is found by
scanning the output directory, or given explicitly.

Selection rule for several matching directories: highest version first,
comparing numeric components as integers ("10.0.0" > "2.0.0"), a plain
release above a suffixed one ("2.0.0" > "2.0.0-beta"), remaining ties broken
by the directory name in descending order.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from anyio import to_thread
from pydantic import BaseModel, ConfigDict, Field

from .config import Config, SnapshotLoaderKind
from .errors import DevToolsError, SnapshotLoaderNotFound
from .launch import run_launcher
from .runtime import LaunchSpec, ProcessLauncher, ProcessRunner, ProcessSpec

__all__ = [
    "BabelOptions",
    "NativeSnapshotLoader",
    "NodeSnapshotLoader",
    "SnapshotHook",
    "SnapshotLoader",
    "SplitterConfig",
    "build_snapshot_hook",
    "copy_snapshots",
    "find_snapshot_loader_dir",
    "run_test_build",
    "select_latest",
    "version_key",
]

logger = logging.getLogger(__name__)

TESTS_PROJECT_DIR = "tests/Fable.SignalR.Tests"
TESTS_PROJECT_FILE = "Fable.SignalR.Tests.fsproj"
SPLITTER_CONFIG_NAME = "splitter.config.json"
SNAPSHOT_DIR_NAME = "__snapshots__"

_RELEASE_RE = re.compile(r"^(\d+(?:\.\d+)*)(.*)$")


# =============================================================================
# Bundler configuration
# =============================================================================


class BabelOptions(BaseModel):
    """Babel section of the bundler config."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    plugins: list[str] = Field(
        default_factory=lambda: ["@babel/plugin-transform-modules-commonjs"]
    )
    source_maps: str = Field(default="inline", alias="sourceMaps")


class SplitterConfig(BaseModel):
    """Static configuration consumed by the test bundler.

    Serialized with the bundler's camelCase keys:
    ``{allFiles, entry, outDir, babel: {plugins, sourceMaps}}``.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    all_files: bool = Field(default=True, alias="allFiles")
    entry: Path
    out_dir: Path = Field(alias="outDir")
    babel: BabelOptions = Field(default_factory=BabelOptions)

    @classmethod
    def for_project(cls, config: Config) -> "SplitterConfig":
        tests_dir = config.resolve(TESTS_PROJECT_DIR)
        return cls(
            entry=tests_dir / TESTS_PROJECT_FILE,
            out_dir=config.resolve(config.tests_out_dir),
        )

    def to_splitter_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    def write(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(self.to_splitter_dict(), indent=2) + "\n",
            encoding="utf-8",
        )
        return path


# =============================================================================
# Loader discovery
# =============================================================================


def version_key(name: str, prefix: str) -> tuple:
    """Sort key for a versioned directory name such as ``Fable.Jester.2.0.0``."""
    suffix = name[len(prefix):].lstrip(".-_") if name.startswith(prefix) else name
    match = _RELEASE_RE.match(suffix)
    if not match:
        return ((), 0, suffix)
    release = tuple(int(part) for part in match.group(1).split("."))
    rest = match.group(2)
    return (release, 0 if rest else 1, rest)


def select_latest(names: Iterable[str], prefix: str) -> str | None:
    """Pick the highest-versioned name starting with prefix, or None."""
    candidates = [name for name in names if name.startswith(prefix)]
    if not candidates:
        return None
    return max(candidates, key=lambda name: (version_key(name, prefix), name))


def find_snapshot_loader_dir(out_dir: Path, prefix: str = "Fable.Jester") -> Path:
    """Locate the snapshot package directory inside the bundler output.

    Raises:
        SnapshotLoaderNotFound: If out_dir is missing or has no matching directory
    """
    if not out_dir.is_dir():
        raise SnapshotLoaderNotFound(f"output directory not found: {out_dir}")

    names = [entry.name for entry in out_dir.iterdir() if entry.is_dir()]
    selected = select_latest(names, prefix)
    if selected is None:
        raise SnapshotLoaderNotFound(f"no {prefix}* directory in {out_dir}")

    logger.debug(f"Selected snapshot package {selected} from {len(names)} entries")
    return out_dir / selected


# =============================================================================
# Loaders
# =============================================================================


class SnapshotLoader(Protocol):
    async def copy_snaps(self, source_dir: Path, out_dir: Path) -> None: ...


@dataclass
class NodeSnapshotLoader:
    """Runs ``copySnaps`` from the package's SnapshotLoader module with node."""

    module_dir: Path
    runner: ProcessRunner = field(default_factory=ProcessRunner)
    node: str = "node"

    MODULE_FILE = "SnapshotLoader.js"
    _SCRIPT = "require(process.argv[1]).copySnaps(process.argv[2], process.argv[3])"

    async def copy_snaps(self, source_dir: Path, out_dir: Path) -> None:
        module = self.module_dir / self.MODULE_FILE
        if not module.is_file():
            raise SnapshotLoaderNotFound(f"{self.MODULE_FILE} not found in {self.module_dir}")
        await self.runner.execute(
            ProcessSpec(argv=[self.node, "-e", self._SCRIPT, str(module), str(source_dir), str(out_dir)])
        )


@dataclass
class NativeSnapshotLoader:
    """Copies every ``__snapshots__`` directory to the same relative path."""

    copied: list[Path] = field(default_factory=list)

    async def copy_snaps(self, source_dir: Path, out_dir: Path) -> None:
        self.copied = await to_thread.run_sync(self._copy, source_dir, out_dir)

    def _copy(self, source_dir: Path, out_dir: Path) -> list[Path]:
        source = source_dir.resolve()
        target_root = out_dir.resolve()
        copied: list[Path] = []
        for snap_dir in sorted(source.rglob(SNAPSHOT_DIR_NAME)):
            if not snap_dir.is_dir() or snap_dir.is_relative_to(target_root):
                continue
            relative = snap_dir.relative_to(source)
            shutil.copytree(snap_dir, target_root / relative, dirs_exist_ok=True)
            copied.append(relative)
        logger.debug(f"Copied {len(copied)} snapshot dir(s) to {target_root}")
        return copied


# =============================================================================
# Hook
# =============================================================================


@dataclass
class SnapshotHook:
    """Post-compile hook that copies snapshots into the bundler output.

    Attributes:
        source_dir: Test project directory holding the snapshot files
        out_dir: Bundler output directory
        loader_dir: Explicit snapshot package directory (skips discovery)
        prefix: Directory name prefix used by discovery
        loader: Explicit loader (skips discovery entirely)
    """

    source_dir: Path
    out_dir: Path
    loader_dir: Path | None = None
    prefix: str = "Fable.Jester"
    loader: SnapshotLoader | None = None

    def resolve_loader(self) -> SnapshotLoader:
        if self.loader is not None:
            return self.loader
        directory = self.loader_dir or find_snapshot_loader_dir(self.out_dir, self.prefix)
        return NodeSnapshotLoader(directory)

    async def __call__(self) -> None:
        loader = self.resolve_loader()
        logger.info(f"Copying snapshots from {self.source_dir} to {self.out_dir}")
        await loader.copy_snaps(self.source_dir, self.out_dir)


def build_snapshot_hook(config: Config, loader_dir: Path | None = None) -> SnapshotHook:
    """Create the hook for the project layout described by config."""
    loader = NativeSnapshotLoader() if config.snapshot_loader is SnapshotLoaderKind.NATIVE else None
    return SnapshotHook(
        source_dir=config.resolve(TESTS_PROJECT_DIR),
        out_dir=config.resolve(config.tests_out_dir),
        loader_dir=loader_dir,
        prefix=config.snapshot_prefix,
        loader=loader,
    )


async def copy_snapshots(config: Config, loader_dir: Path | None = None) -> int:
    """Run the snapshot hook on its own.

    Returns:
        0 on success, 1 on failure
    """
    try:
        await build_snapshot_hook(config, loader_dir)()
    except DevToolsError as e:
        logger.error(f"Snapshot copy failed: {e}")
        return 1
    return 0


async def run_test_build(
    config: Config,
    *,
    launcher: ProcessLauncher | None = None,
    hook: SnapshotHook | None = None,
    install_signal_handlers: bool = True,
) -> int:
    """Write the bundler config, compile the tests, then run the hook once.

    The bundler runs in the foreground like a dev server: its output is
    relayed and Ctrl+C stops it.

    Returns:
        0 on success, the bundler's exit code if it fails, 1 if the hook fails
    """
    hook = hook or build_snapshot_hook(config)

    splitter = SplitterConfig.for_project(config)
    config_path = splitter.write(config.resolve(TESTS_PROJECT_DIR) / SPLITTER_CONFIG_NAME)

    bundler, *bundler_args = config.bundler
    spec = LaunchSpec(
        command=bundler,
        arguments=(*bundler_args, "-c", str(config_path)),
        cwd=config.project_root,
    )
    returncode = await run_launcher(
        spec,
        launcher=launcher,
        shutdown_wait=config.shutdown_wait,
        double_tap_window=config.sigint_double_tap_window,
        install_signal_handlers=install_signal_handlers,
        description="test bundler",
    )
    if returncode != 0:
        logger.error(f"Test compilation failed with exit code {returncode}")
        return returncode

    try:
        await hook()
    except DevToolsError as e:
        logger.error(f"Snapshot copy failed: {e}")
        return 1

    logger.info("Test build finished")
    return 0
