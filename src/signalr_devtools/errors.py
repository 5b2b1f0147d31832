"""devtools 异常类。"""

from __future__ import annotations

from collections.abc import Sequence

__all__ = [
    "DevToolsError",
    "ExternalProcessError",
    "PublishError",
    "SnapshotLoaderNotFound",
]


class DevToolsError(Exception):
    """devtools 基础异常。"""
    pass


class ExternalProcessError(DevToolsError):
    """外部进程错误（无法启动或非零退出）。

    Attributes:
        argv: 命令行
        returncode: 退出码（无法启动时为 None）
        stderr: 子进程 stderr 输出
    """

    def __init__(
        self,
        argv: Sequence[str],
        returncode: int | None = None,
        stderr: bytes = b"",
        message: str = "",
    ) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        if not message:
            if returncode is None:
                message = f"failed to start {self.argv[0] if self.argv else '<empty>'}"
            else:
                message = f"{' '.join(self.argv)} exited with code {returncode}"
            detail = stderr.decode("utf-8", errors="replace").strip()
            if detail:
                message = f"{message}: {detail}"
        self.message = message
        super().__init__(message)


class PublishError(DevToolsError):
    """文档发布失败。"""
    pass


class SnapshotLoaderNotFound(DevToolsError):
    """在测试输出目录中找不到快照加载器。"""
    pass
