"""Frame a subprocess's two output pipes into one combined exec stream.

Both CLI-driven adapters run the job script as a child process with
separate stdout/stderr pipes. ``ProcessExecStream`` pumps each pipe into a
shared queue as ``OutputFrame`` items, which gives the capture pipeline
the same combined, framed stream a container runtime's attach API
returns.

.. code-block:: text

    process.stdout ──pump──┐
                           ├──► queue ──► async for frame in stream
    process.stderr ──pump──┘
                 (None sentinel per pipe at EOF)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from pipelinefox.runtimes._types import OutputFrame, StreamKind

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class ProcessExecStream:
    """``ExecStream`` backed by an ``asyncio`` subprocess.

    Must be created inside a running event loop; the pumps start
    immediately so the child never blocks on a full pipe.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if process.stdout is None or process.stderr is None:
            raise ValueError("process must be started with stdout and stderr pipes")
        self._process = process
        self._chunk_size = chunk_size
        self._queue: asyncio.Queue[OutputFrame | None] = asyncio.Queue()
        self._pumps = [
            asyncio.create_task(self._pump(process.stdout, StreamKind.STDOUT)),
            asyncio.create_task(self._pump(process.stderr, StreamKind.STDERR)),
        ]

    @property
    def pid(self) -> int:
        return self._process.pid

    async def _pump(self, reader: asyncio.StreamReader, kind: StreamKind) -> None:
        try:
            while chunk := await reader.read(self._chunk_size):
                await self._queue.put(OutputFrame(kind=kind, data=chunk))
        finally:
            self._queue.put_nowait(None)

    async def __aiter__(self) -> AsyncIterator[OutputFrame]:
        remaining = len(self._pumps)
        while remaining:
            frame = await self._queue.get()
            if frame is None:
                remaining -= 1
                continue
            yield frame
        # Surface pump failures (broken pipe, read errors)
        for pump in self._pumps:
            await pump

    async def wait(self) -> int:
        return await self._process.wait()

    async def close(self) -> None:
        """Kill the child if still running and stop the pumps."""
        if self._process.returncode is None:
            try:
                self._process.kill()
            except ProcessLookupError:
                pass
            await self._process.wait()
        for pump in self._pumps:
            if not pump.done():
                pump.cancel()
        await asyncio.gather(*self._pumps, return_exceptions=True)
        logger.debug("Exec process %s closed", self._process.pid)
