"""Output capture pipeline: combined exec stream → tagged sink lines.

Three concurrent tasks per job:

.. code-block:: text

                      ┌──► stdout pipe ──► stdout consumer ──► stdout sink
    exec stream ──demux                      "[stage/job] line\\n"
                      └──► stderr pipe ──► stderr consumer ──► stderr sink
                                             error marker + "[stage/job] line"

- **demux** feeds each ``OutputFrame`` into the pipe for its stream and
  always closes both pipes when the source ends or fails. The close is
  the only "no more output" signal. Frames for a stream whose consumer
  already failed are dropped.
- **consumers** read their pipe line by line and write one formatted line
  per complete line to their sink.

The join waits for all three tasks. The first failure in completion order
becomes the job's error; the remaining tasks finish on their own because
their pipes reach EOF. Order is preserved within one stream; interleaving
between the two sinks is not.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from pipelinefox.errors import OutputStreamError, PipelineFoxError
from pipelinefox.logging import get_logger
from pipelinefox.model import Job
from pipelinefox.runtimes import ExecStream, StreamKind

logger = get_logger(__name__)

DEFAULT_LINE_LIMIT = 1024 * 1024

_RED = b"\x1b[31m"
_RESET = b"\x1b[0m"


@runtime_checkable
class Sink(Protocol):
    """Caller-supplied destination that accepts output bytes."""

    def write(self, data: bytes, /) -> object: ...


@dataclass(frozen=True)
class LineFormatter:
    """Formats captured lines with the job's ``[stage/job]`` prefix."""

    color: bool = True

    def stdout_line(self, job: Job, line: bytes) -> bytes:
        return b"[" + job.label.encode() + b"] " + line + b"\n"

    def stderr_line(self, job: Job, line: bytes) -> bytes:
        if self.color:
            return _RED + b"[" + job.label.encode() + b"] " + line + _RESET + b"\n"
        return b"[" + job.label.encode() + b"] ! " + line + b"\n"


async def capture_output(
    stream: ExecStream,
    job: Job,
    stdout: Sink,
    stderr: Sink,
    *,
    formatter: LineFormatter | None = None,
    line_limit: int = DEFAULT_LINE_LIMIT,
) -> None:
    """Drain ``stream`` into the two sinks until the source ends.

    Raises:
        OutputStreamError: the source stream, a pipe, or a sink failed.
    """
    formatter = formatter or LineFormatter()
    out_pipe = asyncio.StreamReader(limit=line_limit)
    err_pipe = asyncio.StreamReader(limit=line_limit)

    async def consume(pipe: asyncio.StreamReader, sink: Sink, render: Callable[[Job, bytes], bytes]) -> None:
        while line := await pipe.readline():
            sink.write(render(job, line.rstrip(b"\r\n")))

    readers = {
        StreamKind.STDOUT: (
            out_pipe,
            asyncio.create_task(consume(out_pipe, stdout, formatter.stdout_line), name=f"{job.label}:stdout"),
        ),
        StreamKind.STDERR: (
            err_pipe,
            asyncio.create_task(consume(err_pipe, stderr, formatter.stderr_line), name=f"{job.label}:stderr"),
        ),
    }

    async def demux() -> None:
        try:
            async for frame in stream:
                pipe, consumer = readers[frame.kind]
                # A failed consumer reads nothing more; only drain the source
                if not consumer.done():
                    pipe.feed_data(frame.data)
        finally:
            out_pipe.feed_eof()
            err_pipe.feed_eof()

    tasks = [
        asyncio.create_task(demux(), name=f"{job.label}:demux"),
        *(consumer for _, consumer in readers.values()),
    ]

    first_error: BaseException | None = None
    try:
        for finished in asyncio.as_completed(tasks):
            try:
                await finished
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if first_error is None:
                    first_error = exc
                    logger.debug("capture.task_failed", error=str(exc))
    finally:
        # Only reached with pending tasks when the caller is cancelled
        # (job deadline); normal completion leaves nothing to cancel.
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    if first_error is not None:
        if isinstance(first_error, PipelineFoxError):
            raise first_error
        raise OutputStreamError(
            f"Output capture failed for {job.label}: {first_error}",
            cause=first_error,
        ) from first_error
