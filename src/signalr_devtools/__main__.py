"""signalr-devtools 入口点。

支持: python -m signalr_devtools
"""

from .app import entrypoint

if __name__ == "__main__":
    entrypoint()
