"""signalr-devtools 应用入口。

包含日志配置、命令行解析和各个控制台脚本入口点。

命令:
    signalr-dev start-server        启动 demo 服务器
    signalr-dev start-test-server   启动测试服务器
    signalr-dev publish-docs        发布文档到 gh-pages
    signalr-dev build-tests         编译测试并复制快照
    signalr-dev copy-snapshots      仅复制快照
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from . import __version__
from .config import Config, get_config
from .errors import DevToolsError
from .launch import run_launcher
from .publish import publish_docs
from .servers import server_spec
from .snapshots import copy_snapshots, run_test_build

__all__ = [
    "build_parser",
    "configure_logging",
    "main",
    "publish_docs_main",
    "start_server",
    "start_test_server",
]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JsonSerializingFormatter(logging.Formatter):
    """尝试将日志参数中的对象 JSON 序列化。"""

    def format(self, record: logging.LogRecord) -> str:
        if record.args:
            new_args = []
            for arg in record.args:
                try:
                    if hasattr(arg, "model_dump"):
                        # Pydantic 模型
                        new_args.append(json.dumps(arg.model_dump(mode="json"), ensure_ascii=False))
                    elif isinstance(arg, dict):
                        new_args.append(json.dumps(arg, ensure_ascii=False, default=str))
                    else:
                        new_args.append(arg)
                except (TypeError, ValueError):
                    new_args.append(arg)
            record.args = tuple(new_args)
        return super().format(record)


def configure_logging(config: Config, verbose: bool = False) -> None:
    """配置日志输出。

    子进程的输出直接转发到 stdout/stderr，不经过日志。
    """
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(JsonSerializingFormatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.DEBUG if verbose else logging.INFO

    # root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers, force=True)
    # 只对 signalr_devtools 命名空间启用详细日志
    logging.getLogger("signalr_devtools").setLevel(log_level)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signalr-dev",
        description="Developer tooling for Fable.SignalR",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("start-server", help="Run the demo server")
    sub.add_parser("start-test-server", help="Run the test server")
    sub.add_parser("publish-docs", help="Publish the docs directory")
    sub.add_parser("build-tests", help="Compile the tests and copy snapshots")
    snaps = sub.add_parser("copy-snapshots", help="Copy snapshots into the test output")
    snaps.add_argument(
        "--loader-dir",
        type=Path,
        default=None,
        help="Snapshot package directory (default: discover in the test output)",
    )
    return parser


async def _run_server(name: str, config: Config) -> int:
    return await run_launcher(
        server_spec(name, config),
        shutdown_wait=config.shutdown_wait,
        double_tap_window=config.sigint_double_tap_window,
    )


async def _dispatch(args: argparse.Namespace, config: Config) -> int:
    if args.command == "start-server":
        return await _run_server("demo", config)
    if args.command == "start-test-server":
        return await _run_server("test", config)
    if args.command == "publish-docs":
        return await publish_docs(config)
    if args.command == "build-tests":
        return await run_test_build(config)
    if args.command == "copy-snapshots":
        return await copy_snapshots(config, args.loader_dir)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Sequence[str] | None = None) -> int:
    """`signalr-dev` 主入口点。"""
    args = build_parser().parse_args(argv)
    config = get_config()
    configure_logging(config, verbose=args.verbose)
    logger.debug(f"Loaded {config}")
    try:
        return asyncio.run(_dispatch(args, config))
    except DevToolsError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


def entrypoint() -> None:
    """Console script entrypoint."""
    raise SystemExit(main())


def start_server() -> None:
    """`start-server` 控制台脚本（无参数）。"""
    raise SystemExit(main(["start-server"]))


def start_test_server() -> None:
    """`start-test-server` 控制台脚本（无参数）。"""
    raise SystemExit(main(["start-test-server"]))


def publish_docs_main() -> None:
    """`publish-docs` 控制台脚本（无参数）。"""
    raise SystemExit(main(["publish-docs"]))
