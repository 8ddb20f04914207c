"""Tests for the child-process transport."""

import asyncio
import sys

import pytest

from firezap.adapters.process_transport import (
    LineBuffer,
    ProcessTransport,
    parse_marker_line,
)
from firezap.adapters.transport import (
    TransportStartError,
    UnsupportedOperationError,
)
from firezap.domain.transport import TransportEvent, TransportEventKind
from tests.fakes import eventually


def _python_transport(script: str) -> tuple[ProcessTransport, list[TransportEvent]]:
    transport = ProcessTransport(
        session_id="alpha",
        argv=[sys.executable, "-c", script],
        stop_timeout=1.0,
        drain_timeout=0.2,
    )
    events: list[TransportEvent] = []
    transport.on_event(events.append)
    return transport, events


def _kinds(events: list[TransportEvent]) -> list[TransportEventKind]:
    return [event.kind for event in events]


def test_line_buffer_holds_partial_lines() -> None:
    buffer = LineBuffer()

    assert buffer.feed(b"QR_RA") == []
    assert buffer.feed(b"W:abc\r\nSTATUS:re") == ["QR_RAW:abc"]
    assert buffer.feed(b"ady\n\n") == ["STATUS:ready", ""]
    assert buffer.flush() is None


def test_line_buffer_flush_returns_unterminated_tail() -> None:
    buffer = LineBuffer()
    buffer.feed(b"partial \xff")

    assert buffer.flush() == "partial \ufffd"
    assert buffer.flush() is None


def test_parse_marker_line_recognizes_markers() -> None:
    qr = parse_marker_line("QR_DATAURL:data:image/png;base64,AAA")
    raw = parse_marker_line("QR_RAW:2@abc,def")
    status = parse_marker_line("STATUS:disconnected:NAVIGATION")
    ready = parse_marker_line("STATUS:Ready")

    assert qr == TransportEvent(
        kind=TransportEventKind.QR, payload="data:image/png;base64,AAA"
    )
    assert raw == TransportEvent(kind=TransportEventKind.QR_RAW, payload="2@abc,def")
    assert status == TransportEvent(
        kind=TransportEventKind.DISCONNECTED, detail="NAVIGATION"
    )
    assert ready == TransportEvent(kind=TransportEventKind.READY)


def test_parse_marker_line_ignores_noise_and_malformed_markers() -> None:
    assert parse_marker_line("Loading chromium...") is None
    assert parse_marker_line("QR_DATAURL:") is None
    assert parse_marker_line("STATUS:sleeping") is None
    assert parse_marker_line("  STATUS:ready") is None


def test_markers_then_exit_code_are_reported() -> None:
    script = (
        "import sys\n"
        "print('booting')\n"
        "print('QR_DATAURL:data:image/png;base64,AAA')\n"
        "print('STATUS:authenticated')\n"
        "sys.stdout.write('STATUS:re')\n"
        "sys.stdout.flush()\n"
        "sys.stdout.write('ady\\n')\n"
        "sys.exit(1)\n"
    )

    async def scenario() -> None:
        transport, events = _python_transport(script)
        await transport.start()
        await eventually(lambda: TransportEventKind.EXITED in _kinds(events))

        assert _kinds(events) == [
            TransportEventKind.QR,
            TransportEventKind.AUTHENTICATED,
            TransportEventKind.READY,
            TransportEventKind.EXITED,
        ]
        assert events[-1].exit_code == 1
        assert events[-1].exit_signal is None
        await transport.stop()

    asyncio.run(scenario())


def test_exit_is_seen_while_a_grandchild_holds_the_pipes() -> None:
    script = (
        "import subprocess, sys\n"
        "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(3)'])\n"
        "print('STATUS:ready', flush=True)\n"
        "sys.exit(1)\n"
    )

    async def scenario() -> None:
        transport, events = _python_transport(script)
        await transport.start()
        await eventually(
            lambda: TransportEventKind.EXITED in _kinds(events), timeout=1.5
        )

        assert _kinds(events) == [
            TransportEventKind.READY,
            TransportEventKind.EXITED,
        ]
        assert events[-1].exit_code == 1
        await transport.stop()

    asyncio.run(scenario())


def test_stderr_is_logged_but_never_parsed() -> None:
    script = (
        "import sys\n"
        "print('STATUS:ready', file=sys.stderr, flush=True)\n"
        "print('STATUS:authenticated', flush=True)\n"
    )

    async def scenario() -> None:
        transport, events = _python_transport(script)
        await transport.start()
        await eventually(lambda: TransportEventKind.EXITED in _kinds(events))

        assert _kinds(events) == [
            TransportEventKind.AUTHENTICATED,
            TransportEventKind.EXITED,
        ]
        assert events[-1].exit_code == 0

    asyncio.run(scenario())


def test_exit_by_signal_is_reported() -> None:
    script = "import os, signal\nos.kill(os.getpid(), signal.SIGKILL)\n"

    async def scenario() -> None:
        transport, events = _python_transport(script)
        await transport.start()
        await eventually(lambda: bool(events))

        assert events == [
            TransportEvent(kind=TransportEventKind.EXITED, exit_signal=9)
        ]

    asyncio.run(scenario())


def test_stop_terminates_without_exit_event_and_is_idempotent() -> None:
    script = (
        "import time\n"
        "print('STATUS:authenticated', flush=True)\n"
        "time.sleep(30)\n"
    )

    async def scenario() -> None:
        transport, events = _python_transport(script)
        await transport.start()
        await eventually(lambda: bool(events))
        assert transport.pid is not None

        await transport.stop()
        await transport.stop()
        await asyncio.sleep(0.05)

        assert _kinds(events) == [TransportEventKind.AUTHENTICATED]

    asyncio.run(scenario())


def test_stop_before_start_prevents_spawn() -> None:
    async def scenario() -> None:
        transport, events = _python_transport("print('STATUS:ready')")
        await transport.stop()
        await transport.start()

        assert transport.pid is None
        assert events == []

    asyncio.run(scenario())


def test_missing_executable_raises_start_error() -> None:
    async def scenario() -> None:
        transport = ProcessTransport(
            session_id="alpha", argv=["/nonexistent/robot-binary"]
        )
        with pytest.raises(TransportStartError):
            await transport.start()

    asyncio.run(scenario())


def test_outbound_operations_are_unsupported() -> None:
    transport = ProcessTransport(session_id="alpha", argv=["true"])

    with pytest.raises(UnsupportedOperationError):
        asyncio.run(transport.send_text("551100@c.us", "hi"))
    with pytest.raises(UnsupportedOperationError):
        asyncio.run(transport.is_registered("551100"))
