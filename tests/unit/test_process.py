"""Unit tests for streaming process execution."""

from __future__ import annotations

import asyncio
import sys

import pytest

from helmsail.errors import ExecutableNotFoundError, ProcessExecutionError
from helmsail.process import ProcessLauncher
from tests.helpers.fake_launcher import RecordingSink

_TWO_STREAMS = (
    "import sys\n"
    "print('out-1', flush=True)\n"
    "print('err-1', file=sys.stderr, flush=True)\n"
    "print('out-2', flush=True)\n"
)
_FAILING = (
    "import sys\n"
    "print('working', flush=True)\n"
    "print('boom', file=sys.stderr, flush=True)\n"
    "print('again', file=sys.stderr, flush=True)\n"
    "sys.exit(3)\n"
)
_LONG_RUNNING = "import time\nprint('ready', flush=True)\ntime.sleep(30)\n"


def _python(script: str) -> list[str]:
    return ["-c", script]


@pytest.mark.asyncio
async def test_execute_streams_both_pipes() -> None:
    """Lines from stdout and stderr are all yielded and echoed."""
    sink = RecordingSink()
    launcher = ProcessLauncher(sink)

    lines = [
        line async for line in launcher.execute(sys.executable, _python(_TWO_STREAMS))
    ]

    assert sorted(lines) == ["err-1", "out-1", "out-2"]
    assert sink.lines == ["out-1", "out-2"], "stdout lines go to write()"
    assert sink.errors == ["err-1"], "stderr lines go to write_error()"


@pytest.mark.asyncio
async def test_execute_to_end_concatenates_without_separator() -> None:
    """execute_to_end joins lines with no separator."""
    launcher = ProcessLauncher(RecordingSink())
    script = "print('[{\"name\":'); print('\"r1\"}]')"

    output = await launcher.execute_to_end(sys.executable, _python(script))

    assert output == '[{"name":"r1"}]'


@pytest.mark.asyncio
async def test_mute_keeps_output_off_the_sink() -> None:
    """Muted commands still yield lines but echo nothing."""
    sink = RecordingSink()
    launcher = ProcessLauncher(sink)

    output = await launcher.execute_to_end(
        sys.executable, _python(_TWO_STREAMS), mute=True
    )

    assert "out-1" in output
    assert sink.lines == [], "muted stdout must not reach the sink"
    assert sink.errors == [], "muted stderr must not reach the sink"


@pytest.mark.asyncio
async def test_non_zero_exit_raises_after_last_line() -> None:
    """A failing command raises with the exit code and captured stderr."""
    launcher = ProcessLauncher(RecordingSink())
    seen: list[str] = []

    with pytest.raises(ProcessExecutionError) as excinfo:
        async for line in launcher.execute(sys.executable, _python(_FAILING)):
            seen.append(line)

    error = excinfo.value
    assert error.returncode == 3
    assert error.stderr == "boom\nagain"
    assert "working" in seen, "lines before the failure are still yielded"
    assert "(exit code 3)" in str(error)


@pytest.mark.asyncio
async def test_string_arguments_use_shell_splitting() -> None:
    """An argument string is split with shell quoting rules."""
    launcher = ProcessLauncher(RecordingSink())

    output = await launcher.execute_to_end(
        sys.executable, "-c 'import sys; print(sys.argv[1])' 'two words'"
    )

    assert output == "two words"


@pytest.mark.asyncio
async def test_cancel_event_ends_stream_without_error() -> None:
    """Setting the cancel event terminates the process quietly."""
    launcher = ProcessLauncher(RecordingSink())
    cancel = asyncio.Event()
    lines: list[str] = []

    async with asyncio.timeout(10):
        async for line in launcher.execute(
            sys.executable, _python(_LONG_RUNNING), cancel=cancel
        ):
            lines.append(line)
            cancel.set()

    assert lines == ["ready"]


@pytest.mark.asyncio
async def test_closing_the_stream_early_stops_the_process() -> None:
    """Abandoning the iterator kills the child instead of hanging."""
    launcher = ProcessLauncher(RecordingSink())
    stream = launcher.execute(sys.executable, _python(_LONG_RUNNING))

    async with asyncio.timeout(10):
        first = await anext(stream)  # type: ignore[arg-type]
        await stream.aclose()  # type: ignore[attr-defined]

    assert first == "ready"


@pytest.mark.asyncio
async def test_missing_executable_is_reported() -> None:
    """An unknown command raises ExecutableNotFoundError."""
    launcher = ProcessLauncher(RecordingSink())

    with pytest.raises(ExecutableNotFoundError, match="helmsail-no-such-tool"):
        await launcher.execute_to_end("helmsail-no-such-tool", "version")
