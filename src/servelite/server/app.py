# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""FastAPI application serving a session root plus the reload websocket."""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from pathlib import Path

import anyio
from fastapi import FastAPI, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles
from starlette.websockets import WebSocketState

from ..runtime.logging import StructuredLogger, get_logger
from .broadcast import RELOAD_MESSAGE, ReloadBroadcaster, Subscription

RELOAD_PATH = "/ws"
CORS_METHODS = ("GET", "POST", "OPTIONS")
CORS_HEADERS = ("Content-Type",)


async def forward_reloads(websocket: WebSocket, subscription: Subscription) -> None:
    """Send one ``reload`` text frame per signal until the stream ends."""
    async for _ in subscription:
        await websocket.send_text(RELOAD_MESSAGE)


async def drain_inbound(websocket: WebSocket) -> None:
    """Discard client frames until the client goes away."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


class _ReloadHandlers:
    def __init__(
        self, *, broadcaster: ReloadBroadcaster, logger: StructuredLogger
    ) -> None:
        super().__init__()
        self._broadcaster = broadcaster
        self._logger = logger

    async def reload_socket(self, websocket: WebSocket) -> None:
        logger = self._logger.bind(client=_client_label(websocket))
        # Subscribe before completing the handshake so no signal sent after
        # the client sees the upgrade can be missed.
        with self._broadcaster.subscribe() as subscription:
            await websocket.accept()
            logger.debug("Reload client connected", event="ws.connect")
            # Whichever half ends first cancels the other.
            async with anyio.create_task_group() as task_group:
                scope = task_group.cancel_scope
                task_group.start_soon(
                    _run_half,
                    scope,
                    logger,
                    functools.partial(forward_reloads, websocket, subscription),
                )
                task_group.start_soon(
                    _run_half,
                    scope,
                    logger,
                    functools.partial(drain_inbound, websocket),
                )

        await _close_quietly(websocket, logger)
        logger.debug("Reload client disconnected", event="ws.disconnect")

    async def reject_socket(self, websocket: WebSocket) -> None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)

    async def upgrade_required(self) -> PlainTextResponse:
        return PlainTextResponse(
            "Expected a websocket upgrade request",
            status_code=status.HTTP_426_UPGRADE_REQUIRED,
            headers={"Upgrade": "websocket"},
        )


async def _run_half(
    scope: anyio.CancelScope,
    logger: StructuredLogger,
    half: Callable[[], Awaitable[None]],
) -> None:
    try:
        await half()
    except WebSocketDisconnect:
        pass
    except (OSError, RuntimeError) as error:
        logger.debug(
            "Reload connection transport error",
            event="ws.transport_error",
            context={"error": repr(error)},
        )
    finally:
        scope.cancel()


async def _close_quietly(websocket: WebSocket, logger: StructuredLogger) -> None:
    if (
        websocket.application_state is not WebSocketState.CONNECTED
        or websocket.client_state is not WebSocketState.CONNECTED
    ):
        return
    try:
        await websocket.close()
    except (WebSocketDisconnect, RuntimeError, OSError) as error:
        logger.debug(
            "Reload connection already gone",
            event="ws.transport_error",
            context={"error": repr(error)},
        )


def _client_label(websocket: WebSocket) -> str:
    client = websocket.client
    if client is None:
        return "unknown"
    return f"{client.host}:{client.port}"


def build_app(
    root: Path,
    broadcaster: ReloadBroadcaster,
    *,
    logger: StructuredLogger | None = None,
) -> FastAPI:
    """Construct the application serving ``root`` with live reload on ``/ws``.

    Routes are fixed at construction, so request handling never needs the
    session lock. Static files come from Starlette's ``StaticFiles`` mounted
    last so it only sees paths no other route claimed; directories serve their
    ``index.html`` and there is no directory listing.
    """

    resolved_logger = logger or get_logger(__name__)
    handlers = _ReloadHandlers(broadcaster=broadcaster, logger=resolved_logger)

    # Interactive docs would shadow files named docs/ or openapi.json.
    app = FastAPI(
        title="ServeLite",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.root = root
    app.state.broadcaster = broadcaster
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=list(CORS_METHODS),
        allow_headers=list(CORS_HEADERS),
    )

    app.add_api_websocket_route(RELOAD_PATH, handlers.reload_socket)
    _ = app.get(RELOAD_PATH, include_in_schema=False)(handlers.upgrade_required)
    app.add_api_websocket_route("/{path:path}", handlers.reject_socket)
    app.mount("/", StaticFiles(directory=str(root), html=True), name="files")

    return app


__all__ = [
    "CORS_HEADERS",
    "CORS_METHODS",
    "RELOAD_PATH",
    "build_app",
    "drain_inbound",
    "forward_reloads",
]
