"""Readiness-driven pumping of a child's stdin/stdout/stderr.

Nothing in here blocks: every descriptor is switched to non-blocking mode and
serviced only when the event loop reports it ready.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from typing import IO

from diskd.config import DRAIN_CHUNK_SIZE, READ_CHUNK_SIZE

logger = logging.getLogger(__name__)

OutputFn = Callable[[str, bytes], None]


class PipeChannel:
    """Parent end of one pipe, registered for either reading or writing."""

    def __init__(self, loop: asyncio.AbstractEventLoop, name: str, pipe: IO[bytes]) -> None:
        self._loop = loop
        self.name = name
        self._pipe: IO[bytes] | None = pipe
        self.fd = pipe.fileno()
        self._watch: str | None = None
        os.set_blocking(self.fd, False)

    @property
    def closed(self) -> bool:
        return self._pipe is None

    def watch_readable(self, callback: Callable[[], None]) -> None:
        self._loop.add_reader(self.fd, callback)
        self._watch = "read"

    def watch_writable(self, callback: Callable[[], None]) -> None:
        self._loop.add_writer(self.fd, callback)
        self._watch = "write"

    def unwatch(self) -> None:
        if self._watch == "read":
            self._loop.remove_reader(self.fd)
        elif self._watch == "write":
            self._loop.remove_writer(self.fd)
        self._watch = None

    def close(self) -> None:
        if self._pipe is None:
            return
        self.unwatch()
        pipe, self._pipe = self._pipe, None
        try:
            pipe.close()
        except OSError:
            logger.warning("Failed to close %s pipe", self.name, exc_info=True)


class IOPump:
    """Services the three pipe ends of one child until they are exhausted."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        *,
        stdout: IO[bytes],
        stderr: IO[bytes],
        stdin: IO[bytes] | None = None,
        input_data: bytearray | None = None,
        chunk_size: int = READ_CHUNK_SIZE,
        on_output: OutputFn | None = None,
    ) -> None:
        self._chunk_size = chunk_size
        self._on_output = on_output
        self.stdout = bytearray()
        self.stderr = bytearray()
        self._input = input_data if input_data is not None else bytearray()
        self._cursor = 0
        self._stdin = PipeChannel(loop, "stdin", stdin) if stdin is not None else None
        self._stdout = PipeChannel(loop, "stdout", stdout)
        self._stderr = PipeChannel(loop, "stderr", stderr)

    @property
    def bytes_written(self) -> int:
        return self._cursor

    def channels(self) -> list[PipeChannel]:
        return [c for c in (self._stdin, self._stdout, self._stderr) if c is not None]

    def start(self) -> None:
        if self._stdin is not None:
            self._stdin.watch_writable(self._write_stdin)
        self._stdout.watch_readable(lambda: self._read(self._stdout, self.stdout))
        self._stderr.watch_readable(lambda: self._read(self._stderr, self.stderr))

    def _read(self, channel: PipeChannel, buf: bytearray) -> None:
        try:
            data = os.read(channel.fd, self._chunk_size)
        except BlockingIOError:
            return
        except OSError:
            logger.warning("Reading child %s failed", channel.name, exc_info=True)
            channel.unwatch()
            return
        if not data:
            # EOF; the descriptor itself stays open until teardown.
            channel.unwatch()
            return
        self._append(channel.name, buf, data)

    def _append(self, name: str, buf: bytearray, data: bytes) -> None:
        buf += data
        if self._on_output is not None:
            self._on_output(name, data)

    def _write_stdin(self) -> None:
        channel = self._stdin
        if channel is None or channel.closed:
            return
        if self._cursor >= len(self._input):
            # Nothing left; closing our end is what gives the child EOF.
            channel.close()
            return
        try:
            written = os.write(channel.fd, memoryview(self._input)[self._cursor :])
        except BlockingIOError:
            return
        except BrokenPipeError:
            logger.debug("Child closed its stdin after %d bytes", self._cursor)
            channel.close()
            return
        self._cursor += written

    def drain(self) -> None:
        """Read whatever is still buffered in stdout/stderr, without blocking."""
        for channel, buf in ((self._stdout, self.stdout), (self._stderr, self.stderr)):
            if channel.closed:
                continue
            while True:
                try:
                    data = os.read(channel.fd, DRAIN_CHUNK_SIZE)
                except BlockingIOError:
                    break
                except OSError:
                    logger.warning("Draining child %s failed", channel.name, exc_info=True)
                    break
                if not data:
                    break
                self._append(channel.name, buf, data)

    def close(self) -> None:
        for channel in self.channels():
            channel.close()
        self.stdout = bytearray()
        self.stderr = bytearray()
