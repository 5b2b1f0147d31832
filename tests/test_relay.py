"""relay_output tests."""

from __future__ import annotations

import io
import sys

import pytest

from signalr_devtools.runtime import LaunchSpec, ProcessLauncher, relay_output

IS_WINDOWS = sys.platform == "win32"


def fake_spec(fake_server: list[str], *args: str) -> LaunchSpec:
    return LaunchSpec(fake_server[0], [*fake_server[1:], *args])


class TestRelay:
    """Relaying child output to parent streams."""

    @pytest.mark.asyncio
    async def test_stdout_relayed_verbatim(self, fake_server):
        out, err = io.BytesIO(), io.BytesIO()
        handle = await ProcessLauncher().launch(fake_spec(fake_server, "--lines", "100"))

        stats = await relay_output(handle, out, err)

        expected = "".join(f"line{i}\n" for i in range(100)).encode()
        assert out.getvalue() == expected
        assert err.getvalue() == b""
        assert stats.stdout_bytes == len(expected)
        assert stats.stdout_chunks >= 1
        assert stats.stderr_chunks == 0

    @pytest.mark.asyncio
    async def test_stderr_relayed_separately(self, fake_server):
        out, err = io.BytesIO(), io.BytesIO()
        handle = await ProcessLauncher().launch(
            fake_spec(fake_server, "--lines", "2", "--stderr", "oops\n")
        )

        stats = await relay_output(handle, out, err)

        assert out.getvalue() == b"line0\nline1\n"
        assert err.getvalue() == b"oops\n"
        assert stats.stderr_bytes == 5
        assert stats.errors == 0

    @pytest.mark.asyncio
    async def test_spawn_failure_goes_to_stderr(self):
        out, err = io.BytesIO(), io.BytesIO()
        handle = await ProcessLauncher().launch(LaunchSpec("definitely-not-a-real-binary-xyz"))

        stats = await relay_output(handle, out, err)

        assert out.getvalue() == b""
        assert b"failed to start definitely-not-a-real-binary-xyz" in err.getvalue()
        assert stats.errors == 1
        assert stats.stdout_chunks == 0

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX echo")
    async def test_echo_hello(self):
        out, err = io.BytesIO(), io.BytesIO()
        handle = await ProcessLauncher().launch(LaunchSpec("echo", ["hello"]))

        stats = await relay_output(handle, out, err)

        assert out.getvalue() == b"hello\n"
        assert stats.stdout_chunks == 1
        assert stats.stderr_chunks == 0

    @pytest.mark.asyncio
    async def test_each_chunk_flushed(self, fake_server):
        class Recorder(io.BytesIO):
            flushes = 0

            def flush(self):
                Recorder.flushes += 1
                super().flush()

        out = Recorder()
        handle = await ProcessLauncher(read_size=8).launch(fake_spec(fake_server, "--lines", "20"))

        stats = await relay_output(handle, out, io.BytesIO())

        assert Recorder.flushes == stats.stdout_chunks
