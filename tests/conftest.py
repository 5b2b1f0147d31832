"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from unittest import mock

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
FAKE_SERVER_PATH = FIXTURES_DIR / "fake_server.py"
FAKE_BUNDLER_PATH = FIXTURES_DIR / "fake_bundler.py"

IS_WINDOWS = sys.platform == "win32"


@pytest.fixture
def fake_server() -> list[str]:
    """启动假服务器的命令行前缀。"""
    return [sys.executable, str(FAKE_SERVER_PATH)]


@pytest.fixture
def fake_bundler() -> list[str]:
    """假打包器的命令行前缀。"""
    return [sys.executable, str(FAKE_BUNDLER_PATH)]


@pytest.fixture
def clean_env():
    """清除所有 SRD_* 环境变量并在结束后重新加载配置。"""
    env = {k: v for k, v in os.environ.items() if not k.startswith("SRD_")}
    with mock.patch.dict(os.environ, env, clear=True):
        from signalr_devtools.config import reload_config

        reload_config()
        yield
    from signalr_devtools.config import reload_config

    reload_config()
