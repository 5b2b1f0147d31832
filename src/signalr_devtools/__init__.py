"""Fable.SignalR devtools - 开发服务器启动器、文档发布和测试打包工具。

环境变量:
    SRD_PROJECT_ROOT: 项目根目录（默认当前目录）
    SRD_DOTNET: dotnet 可执行文件
    SRD_REPO_URL: 文档发布目标仓库
    SRD_LOG_DEBUG: 日志调试模式

用法:
    signalr-dev start-server
    start-test-server
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
