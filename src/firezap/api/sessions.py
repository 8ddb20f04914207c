"""Session control endpoints."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, status

from firezap.adapters.transport import TransportError, UnsupportedOperationError
from firezap.api.auth import require_token
from firezap.api.models import SendMessageRequest, ValidateNumberRequest
from firezap.domain.sessions import (
    InvalidSessionIdError,
    SessionStatus,
    digits_only,
)
from firezap.services.sessions import SessionNotReadyError

if TYPE_CHECKING:
    from firezap.containers import AppContainer
    from firezap.services.sessions import Session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sessions"], dependencies=[Depends(require_token)])


def _container(request: Request) -> AppContainer:
    return request.app.state.container


def _get_session_or_404(request: Request, session_id: str) -> Session:
    session = _container(request).registry.get(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="session not found"
        )
    return session


@router.post("/session/{session_id}")
async def ensure_session(session_id: str, request: Request) -> dict[str, object]:
    """Create the session if needed and report its status."""
    try:
        session = await _container(request).registry.ensure(session_id)
    except InvalidSessionIdError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
    return {"id": session.id, "status": session.status}


@router.get("/session/{session_id}/status")
async def session_status(session_id: str, request: Request) -> dict[str, object]:
    """Return the session status with reconnect and exit diagnostics."""
    state = _get_session_or_404(request, session_id).state()
    return {
        "id": state.id,
        "status": state.status,
        "attempts": state.attempts,
        "lastError": state.last_error,
        "exitCode": state.exit_code,
        "exitSignal": state.exit_signal,
    }


@router.get("/session/{session_id}/qr")
async def session_qr(session_id: str, request: Request) -> dict[str, object]:
    """Return the current pairing artifact, if the session is awaiting a scan."""
    state = _get_session_or_404(request, session_id).state()
    return {"id": state.id, "status": state.status, "qr": state.qr}


@router.post("/session/{session_id}/send")
async def send_message(
    session_id: str, payload: SendMessageRequest, request: Request
) -> dict[str, object]:
    """Send a text message through a ready session."""
    session = _get_session_or_404(request, session_id)
    try:
        result = await session.send_text(payload.to, payload.msg)
    except SessionNotReadyError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from exc
    except UnsupportedOperationError as exc:
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED, detail=str(exc)
        ) from exc
    except TransportError as exc:
        logger.exception("Send failed for session %s", session_id)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
        ) from exc
    return {"id": session_id, "result": result}


@router.post("/session/{session_id}/validate")
async def validate_number(
    session_id: str, payload: ValidateNumberRequest, request: Request
) -> dict[str, object]:
    """Report whether a phone number has an account on the network."""
    session = _get_session_or_404(request, session_id)
    try:
        exists = await session.is_registered(payload.number)
    except SessionNotReadyError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from exc
    except UnsupportedOperationError as exc:
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED, detail=str(exc)
        ) from exc
    except TransportError as exc:
        logger.exception("Number validation failed for session %s", session_id)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
        ) from exc
    return {"id": session_id, "number": digits_only(payload.number), "exists": exists}


@router.post("/session/{session_id}/restart")
async def restart_session(session_id: str, request: Request) -> dict[str, object]:
    """Replace the session's transport and reset its reconnect attempts."""
    session = await _container(request).registry.restart(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="session not found"
        )
    return {"id": session.id, "status": session.status}


@router.delete("/session/{session_id}")
async def delete_session(session_id: str, request: Request) -> dict[str, object]:
    """Tear down the session and wipe its credentials. Unknown ids succeed."""
    await _container(request).registry.remove(session_id)
    return {"id": session_id, "status": SessionStatus.DISCONNECTED}


@router.get("/sessions")
async def list_sessions(request: Request) -> dict[str, object]:
    """Return every known session id."""
    return {"sessions": _container(request).registry.list()}
