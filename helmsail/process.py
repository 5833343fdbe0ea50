"""Streaming execution of external commands.

``ProcessLauncher.execute`` starts a command and yields its combined stdout
and stderr as lines while the process is still running. A background task
owns the subprocess pipes and feeds an unbounded queue, so a slow consumer
never stalls the child process on a full pipe. Closing the iterator early
kills the child; setting the ``cancel`` event terminates it and ends the
stream without an error.

Examples
--------
Stream ``helm version`` to the console and collect the JSON from
``helm list``:

    launcher = ProcessLauncher()
    async for line in launcher.execute("helm", "version"):
        ...
    listing = await launcher.execute_to_end("helm", "list -o json", mute=True)

"""

from __future__ import annotations

import asyncio
import contextlib
import shlex
import sys
import typing as typ

from helmsail.errors import ExecutableNotFoundError, ProcessExecutionError
from helmsail.logging import get_logger, log_debug

if typ.TYPE_CHECKING:
    import collections.abc as cabc

logger = get_logger(__name__)

# kubectl emits whole JSON documents (including base64 secret payloads) on a
# single line, well beyond asyncio's 64 KiB default.
_STREAM_LIMIT = 16 * 1024 * 1024

_END_OF_STREAM = object()


class OutputSink(typ.Protocol):
    """Receiver for live process output."""

    def write(self, text: str) -> None:
        """Write a line from the process' standard output."""
        ...

    def write_error(self, text: str) -> None:
        """Write a line from the process' standard error."""
        ...


class ConsoleOutputSink:
    """Write process output to this interpreter's stdout and stderr."""

    def write(self, text: str) -> None:
        """Print ``text`` to stdout."""
        print(text, file=sys.stdout, flush=True)

    def write_error(self, text: str) -> None:
        """Print ``text`` to stderr."""
        print(text, file=sys.stderr, flush=True)


DEFAULT_OUTPUT_SINK: typ.Final[OutputSink] = ConsoleOutputSink()


def _split_arguments(arguments: str | cabc.Sequence[str]) -> list[str]:
    if isinstance(arguments, str):
        return shlex.split(arguments)
    return list(arguments)


async def _settle(task: asyncio.Future[typ.Any]) -> None:
    """Cancel ``task`` if still running and wait for it without raising."""
    if not task.done():
        task.cancel()
    await asyncio.wait({task})
    if not task.cancelled():
        # Mark the exception as retrieved; the consumer has already gone.
        task.exception()


class ProcessLauncher:
    """Run external commands and stream their output line by line."""

    def __init__(self, sink: OutputSink = DEFAULT_OUTPUT_SINK) -> None:
        """Attach the sink that receives unmuted output."""
        self._sink = sink

    @property
    def sink(self) -> OutputSink:
        """The sink receiving live output."""
        return self._sink

    async def execute(
        self,
        command: str,
        arguments: str | cabc.Sequence[str],
        *,
        mute: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> cabc.AsyncIterator[str]:
        """Start ``command`` and yield its output lines as they arrive.

        Parameters
        ----------
        command : str
            Executable name or path.
        arguments : str | Sequence[str]
            Argument string (split with shell rules) or a ready argv list.
        mute : bool, default False
            When set, lines are only yielded, not written to the sink.
        cancel : asyncio.Event | None
            Cancellation switch. Once set, the process is terminated and the
            stream ends without raising.

        Yields
        ------
        str
            Lines from stdout and stderr, interleaved in arrival order, with
            the trailing newline removed.

        Raises
        ------
        ProcessExecutionError
            After the last line, when the process exited non-zero.
        ExecutableNotFoundError
            If ``command`` cannot be found.

        """
        argv = _split_arguments(arguments)
        queue: asyncio.Queue[object] = asyncio.Queue()
        producer = asyncio.create_task(
            self._produce(command, argv, queue, mute=mute, cancel=cancel)
        )
        try:
            while (item := await queue.get()) is not _END_OF_STREAM:
                yield typ.cast("str", item)
            await producer
        finally:
            await _settle(producer)

    async def execute_to_end(
        self,
        command: str,
        arguments: str | cabc.Sequence[str],
        *,
        mute: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> str:
        """Run ``command`` to completion and return its concatenated output."""
        lines = [
            line
            async for line in self.execute(command, arguments, mute=mute, cancel=cancel)
        ]
        return "".join(lines)

    async def _produce(
        self,
        command: str,
        argv: list[str],
        queue: asyncio.Queue[object],
        *,
        mute: bool,
        cancel: asyncio.Event | None,
    ) -> None:
        command_line = shlex.join([command, *argv])
        log_debug(logger, "Executing %s", command_line)
        try:
            try:
                process = await asyncio.create_subprocess_exec(  # noqa: S603
                    command,
                    *argv,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    limit=_STREAM_LIMIT,
                )
            except FileNotFoundError as exc:
                raise ExecutableNotFoundError(command) from exc

            try:
                await self._run(process, command_line, queue, mute=mute, cancel=cancel)
            finally:
                if process.returncode is None:
                    with contextlib.suppress(ProcessLookupError):
                        process.kill()
                    await process.wait()
        finally:
            queue.put_nowait(_END_OF_STREAM)

    async def _run(
        self,
        process: asyncio.subprocess.Process,
        command_line: str,
        queue: asyncio.Queue[object],
        *,
        mute: bool,
        cancel: asyncio.Event | None,
    ) -> None:
        stdout, stderr = process.stdout, process.stderr
        if stdout is None or stderr is None:  # pragma: no cover - pipes requested
            msg = "subprocess pipes are not available"
            raise RuntimeError(msg)

        errors: list[str] = []
        readers = asyncio.gather(
            self._pump(stdout, queue, None if mute else self._sink.write),
            self._pump(
                stderr, queue, None if mute else self._sink.write_error, errors
            ),
        )
        cancelled = asyncio.ensure_future(
            cancel.wait() if cancel is not None else asyncio.Future()
        )
        try:
            await asyncio.wait(
                {readers, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
            if not readers.done():
                log_debug(logger, "Cancelled %s", command_line)
                with contextlib.suppress(ProcessLookupError):
                    process.terminate()
                await process.wait()
                return
            await readers
        finally:
            await _settle(cancelled)
            await _settle(readers)

        returncode = await process.wait()
        if returncode != 0:
            raise ProcessExecutionError(command_line, returncode, "\n".join(errors))

    @staticmethod
    async def _pump(
        stream: asyncio.StreamReader,
        queue: asyncio.Queue[object],
        echo: cabc.Callable[[str], None] | None,
        capture: list[str] | None = None,
    ) -> None:
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            queue.put_nowait(line)
            if capture is not None:
                capture.append(line)
            if echo is not None:
                echo(line)


__all__ = [
    "DEFAULT_OUTPUT_SINK",
    "ConsoleOutputSink",
    "OutputSink",
    "ProcessLauncher",
]
