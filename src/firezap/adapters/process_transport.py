"""Supervised child-process transport driven by stdout markers."""

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from firezap.adapters.transport import (
    EventHandler,
    TransportStartError,
    UnsupportedOperationError,
)
from firezap.domain.transport import TransportEvent, TransportEventKind

logger = logging.getLogger(__name__)

QR_DATAURL_PREFIX = "QR_DATAURL:"
QR_RAW_PREFIX = "QR_RAW:"
STATUS_PREFIX = "STATUS:"

_STATUS_KINDS = {
    "authenticated": TransportEventKind.AUTHENTICATED,
    "ready": TransportEventKind.READY,
    "disconnected": TransportEventKind.DISCONNECTED,
    "error": TransportEventKind.ERROR,
}
_READ_CHUNK_SIZE = 4096
_EXIT_POLL_INTERVAL = 0.05


class LineBuffer:
    """Accumulates stream chunks and releases only complete lines."""

    def __init__(self) -> None:
        self._pending = bytearray()

    def feed(self, chunk: bytes) -> list[str]:
        """Add a chunk and return every line it completed."""
        self._pending.extend(chunk)
        lines: list[str] = []
        while True:
            index = self._pending.find(b"\n")
            if index < 0:
                break
            raw = bytes(self._pending[:index])
            del self._pending[: index + 1]
            lines.append(_decode(raw))
        return lines

    def flush(self) -> str | None:
        """Return and clear any unterminated trailing data."""
        if not self._pending:
            return None
        raw = bytes(self._pending)
        self._pending.clear()
        return _decode(raw)


def parse_marker_line(line: str) -> TransportEvent | None:
    """Translate one complete output line into a transport event.

    Returns None for lines that are not markers or that are malformed.
    """
    if line.startswith(QR_DATAURL_PREFIX):
        payload = line[len(QR_DATAURL_PREFIX) :].strip()
        if not payload:
            logger.warning("Dropping QR_DATAURL marker without payload")
            return None
        return TransportEvent(kind=TransportEventKind.QR, payload=payload)
    if line.startswith(QR_RAW_PREFIX):
        payload = line[len(QR_RAW_PREFIX) :].strip()
        if not payload:
            logger.warning("Dropping QR_RAW marker without payload")
            return None
        return TransportEvent(kind=TransportEventKind.QR_RAW, payload=payload)
    if line.startswith(STATUS_PREFIX):
        state, _, detail = line[len(STATUS_PREFIX) :].partition(":")
        kind = _STATUS_KINDS.get(state.strip().lower())
        if kind is None:
            logger.warning("Dropping unknown status marker: %r", state)
            return None
        return TransportEvent(kind=kind, detail=detail.strip() or None)
    return None


@dataclass
class ProcessTransport:
    """Runs one child process per session and parses its output markers."""

    session_id: str
    argv: Sequence[str]
    workdir: Path | None = None
    stop_timeout: float = 5.0
    drain_timeout: float = 1.0
    _handler: EventHandler | None = field(default=None, init=False, repr=False)
    _process: asyncio.subprocess.Process | None = field(
        default=None, init=False, repr=False
    )
    _watcher: asyncio.Task[None] | None = field(default=None, init=False, repr=False)
    _stopping: bool = field(default=False, init=False, repr=False)

    @property
    def pid(self) -> int | None:
        """Return the child process id once spawned."""
        return self._process.pid if self._process else None

    def on_event(self, handler: EventHandler) -> None:
        """Register the consumer of parsed events."""
        self._handler = handler

    async def start(self) -> None:
        """Spawn the child process and begin reading its output."""
        if self._process is not None or self._stopping:
            return
        try:
            process = await asyncio.create_subprocess_exec(
                *self.argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.workdir,
            )
        except OSError as exc:
            raise TransportStartError(
                f"Failed to spawn {self.argv[0] if self.argv else '<empty>'}: {exc}"
            ) from exc
        self._process = process
        if self._stopping:
            # stop() arrived while the process was spawning.
            await self._terminate(process)
            return
        logger.info("Session %s process started (pid=%s)", self.session_id, process.pid)
        self._watcher = asyncio.create_task(
            self._supervise(process), name=f"process-{self.session_id}"
        )

    async def stop(self) -> None:
        """Terminate the child process. Repeated calls are no-ops."""
        if self._stopping:
            return
        self._stopping = True
        if self._process is not None:
            await self._terminate(self._process)
        if self._watcher is not None:
            self._watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watcher
            self._watcher = None

    async def send_text(self, chat_id: str, text: str) -> dict[str, object]:
        """Outbound messages are not part of the process line protocol."""
        raise UnsupportedOperationError(
            "The process transport cannot send messages."
        )

    async def is_registered(self, number: str) -> bool:
        """Number lookups are not part of the process line protocol."""
        raise UnsupportedOperationError(
            "The process transport cannot validate numbers."
        )

    async def _supervise(self, process: asyncio.subprocess.Process) -> None:
        readers = [
            asyncio.create_task(self._read_stream(process.stdout, "stdout")),
            asyncio.create_task(self._read_stream(process.stderr, "stderr")),
        ]
        try:
            returncode = await _wait_for_exit(process)
            # A descendant that inherited the pipes can keep them open.
            _, pending = await asyncio.wait(readers, timeout=self.drain_timeout)
        finally:
            for reader in readers:
                reader.cancel()
            await asyncio.gather(*readers, return_exceptions=True)
        if pending:
            logger.warning(
                "Session %s output still open after exit, stopped reading",
                self.session_id,
            )
        if self._stopping:
            return
        if returncode < 0:
            exit_code, exit_signal = None, -returncode
        else:
            exit_code, exit_signal = returncode, None
        logger.info(
            "Session %s process exited (code=%s, signal=%s)",
            self.session_id,
            exit_code,
            exit_signal,
        )
        self._emit(
            TransportEvent(
                kind=TransportEventKind.EXITED,
                exit_code=exit_code,
                exit_signal=exit_signal,
            )
        )

    async def _read_stream(
        self, stream: asyncio.StreamReader | None, stream_name: str
    ) -> None:
        if stream is None:
            return
        buffer = LineBuffer()
        while True:
            chunk = await stream.read(_READ_CHUNK_SIZE)
            if not chunk:
                break
            for line in buffer.feed(chunk):
                self._handle_line(line, stream_name)
        leftover = buffer.flush()
        if leftover:
            logger.warning(
                "Session %s discarded unterminated %s output: %r",
                self.session_id,
                stream_name,
                leftover[:80],
            )

    def _handle_line(self, line: str, stream_name: str) -> None:
        if stream_name != "stdout":
            if line:
                logger.info("[%s %s] %s", self.session_id, stream_name, line)
            return
        event = parse_marker_line(line)
        if event is None:
            logger.debug("[%s %s] %s", self.session_id, stream_name, line)
            return
        self._emit(event)

    def _emit(self, event: TransportEvent) -> None:
        if self._handler is None or self._stopping:
            return
        self._handler(event)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(_wait_for_exit(process), timeout=self.stop_timeout)
        except TimeoutError:
            logger.warning(
                "Session %s process ignored SIGTERM, killing", self.session_id
            )
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await _wait_for_exit(process)


async def _wait_for_exit(process: asyncio.subprocess.Process) -> int:
    """Wait for the child itself to exit.

    Process.wait() also waits for every pipe to close, which never happens
    while a descendant still holds one.
    """
    while process.returncode is None:
        await asyncio.sleep(_EXIT_POLL_INTERVAL)
    return process.returncode


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r")
