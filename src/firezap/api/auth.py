"""Optional shared-token auth for the control surface."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Header, HTTPException, Request, WebSocket, status

if TYPE_CHECKING:
    from firezap.containers import AppContainer


def _get_api_token(request: Request) -> str | None:
    container: AppContainer = request.app.state.container
    return container.settings.api_token


async def require_token(
    x_api_token: str | None = Header(default=None),
    api_token: str | None = Depends(_get_api_token),
) -> None:
    """Ensure requests include the API token when one is configured."""
    if api_token is None:
        return
    if not x_api_token or x_api_token != api_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


def websocket_token_ok(websocket: WebSocket) -> bool:
    """Check a WebSocket handshake against the configured API token."""
    container: AppContainer = websocket.app.state.container
    api_token = container.settings.api_token
    if api_token is None:
        return True
    supplied = websocket.headers.get("x-api-token") or websocket.query_params.get(
        "token"
    )
    return supplied == api_token
