"""SRD 环境变量配置管理。

环境变量:
    SRD_PROJECT_ROOT: 项目根目录（相对路径基于此解析）
        - 默认当前工作目录

    SRD_DOTNET: dotnet 可执行文件
        - 默认 "dotnet"

    SRD_SHUTDOWN_WAIT: 发送终止请求后等待子进程退出的时间（秒）
        - 默认 2.0 秒，限制在 0.1-30 秒

    SRD_SIGINT_DOUBLE_TAP_WINDOW: 双击退出窗口时间（秒）
        - 默认 1.0 秒
        - 在此时间窗口内第二次 Ctrl+C 将强制杀死子进程

    SRD_DOCS_DIR: 文档目录
        - 默认 "docs"

    SRD_REPO_URL: 文档发布目标仓库
        - 默认 https://github.com/Shmew/Fable.SignalR.git

    SRD_PUBLISH_BRANCH: 文档发布分支
        - 默认 "gh-pages"

    SRD_PUBLISH_DOTFILES: 发布时是否包含 dotfiles
        - true/1/yes = 包含 (默认)
        - false/0/no = 忽略

    SRD_TESTS_OUT_DIR: 测试打包输出目录
        - 默认 "dist/tests"

    SRD_SNAPSHOT_PREFIX: 快照加载器所在包的目录名前缀
        - 默认 "Fable.Jester"

    SRD_SNAPSHOT_LOADER: 快照复制方式
        - node = 调用包内的 SnapshotLoader.js (默认)
        - native = 直接复制 __snapshots__ 目录

    SRD_BUNDLER: 测试打包命令
        - 默认 "npx fable-splitter"

    SRD_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import os
import shlex
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = ["Config", "SnapshotLoaderKind", "load_config", "get_config", "reload_config"]

DEFAULT_REPO_URL = "https://github.com/Shmew/Fable.SignalR.git"


class SnapshotLoaderKind(Enum):
    """快照复制方式。

    - NODE: 调用快照包内的 SnapshotLoader.js
    - NATIVE: 由本工具直接复制 __snapshots__ 目录
    """

    NODE = "node"
    NATIVE = "native"

    @classmethod
    def from_string(cls, value: str) -> "SnapshotLoaderKind":
        """从字符串解析，无效值返回 NODE。"""
        value = value.lower().strip()
        for kind in cls:
            if kind.value == value:
                return kind
        return cls.NODE


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    """解析浮点数环境变量并限制范围。"""
    if not value:
        return default
    try:
        return max(low, min(float(value), high))
    except ValueError:
        return default


def _parse_str(value: str | None, default: str) -> str:
    if value is None or not value.strip():
        return default
    return value.strip()


@dataclass
class Config:
    """SRD 配置。

    Attributes:
        project_root: 项目根目录
        dotnet: dotnet 可执行文件
        shutdown_wait: 终止请求后等待子进程退出的时间（秒）
        sigint_double_tap_window: 双击退出窗口时间（秒）
        docs_dir: 文档目录（相对 project_root）
        repo_url: 文档发布目标仓库
        publish_branch: 文档发布分支
        publish_dotfiles: 是否发布 dotfiles
        tests_out_dir: 测试打包输出目录（相对 project_root）
        snapshot_prefix: 快照包目录名前缀
        snapshot_loader: 快照复制方式
        bundler: 测试打包命令
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    project_root: Path = field(default_factory=Path.cwd)
    dotnet: str = "dotnet"
    shutdown_wait: float = 2.0
    sigint_double_tap_window: float = 1.0
    docs_dir: str = "docs"
    repo_url: str = DEFAULT_REPO_URL
    publish_branch: str = "gh-pages"
    publish_dotfiles: bool = True
    tests_out_dir: str = "dist/tests"
    snapshot_prefix: str = "Fable.Jester"
    snapshot_loader: SnapshotLoaderKind = SnapshotLoaderKind.NODE
    bundler: list[str] = field(default_factory=lambda: ["npx", "fable-splitter"])
    log_debug: bool = False
    log_file: str | None = None

    def resolve(self, relative: str | Path) -> Path:
        """将相对路径解析到项目根目录下。"""
        path = Path(relative)
        if path.is_absolute():
            return path
        return self.project_root / path

    def __repr__(self) -> str:
        return (
            f"Config(project_root={self.project_root}, "
            f"dotnet={self.dotnet}, "
            f"shutdown_wait={self.shutdown_wait}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window}, "
            f"docs_dir={self.docs_dir}, "
            f"repo_url={self.repo_url}, "
            f"publish_branch={self.publish_branch}, "
            f"publish_dotfiles={self.publish_dotfiles}, "
            f"tests_out_dir={self.tests_out_dir}, "
            f"snapshot_loader={self.snapshot_loader.value}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "fable-signalr-devtools"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"srd_debug_{timestamp}.log"

    return str(log_file.resolve())


def _parse_command(value: str | None, default: list[str]) -> list[str]:
    if not value or not value.strip():
        return list(default)
    return shlex.split(value)


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("SRD_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    root = os.environ.get("SRD_PROJECT_ROOT")
    project_root = Path(root).expanduser() if root and root.strip() else Path.cwd()

    return Config(
        project_root=project_root,
        dotnet=_parse_str(os.environ.get("SRD_DOTNET"), "dotnet"),
        shutdown_wait=_parse_float(os.environ.get("SRD_SHUTDOWN_WAIT"), 2.0, 0.1, 30.0),
        sigint_double_tap_window=_parse_float(
            os.environ.get("SRD_SIGINT_DOUBLE_TAP_WINDOW"), 1.0, 0.1, 10.0
        ),
        docs_dir=_parse_str(os.environ.get("SRD_DOCS_DIR"), "docs"),
        repo_url=_parse_str(os.environ.get("SRD_REPO_URL"), DEFAULT_REPO_URL),
        publish_branch=_parse_str(os.environ.get("SRD_PUBLISH_BRANCH"), "gh-pages"),
        publish_dotfiles=_parse_bool(os.environ.get("SRD_PUBLISH_DOTFILES"), default=True),
        tests_out_dir=_parse_str(os.environ.get("SRD_TESTS_OUT_DIR"), "dist/tests"),
        snapshot_prefix=_parse_str(os.environ.get("SRD_SNAPSHOT_PREFIX"), "Fable.Jester"),
        snapshot_loader=SnapshotLoaderKind.from_string(
            os.environ.get("SRD_SNAPSHOT_LOADER") or "node"
        ),
        bundler=_parse_command(os.environ.get("SRD_BUNDLER"), ["npx", "fable-splitter"]),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
