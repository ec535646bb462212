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

"""Background uvicorn listener with forceful, awaited cancellation."""

from __future__ import annotations

import asyncio
import socket
import threading

import uvicorn
from starlette.types import ASGIApp

from ..errors import ListenerBindError
from ..runtime.logging import StructuredLogger, get_logger

DEFAULT_READY_TIMEOUT = 5.0
DEFAULT_SHUTDOWN_TIMEOUT = 5.0
_STARTUP_POLL_INTERVAL = 0.01


class BackgroundListener:
    """Serves an ASGI app on a pre-bound socket from a dedicated thread.

    The thread owns its own event loop, so the caller's thread (a tray
    callback, the CLI) never runs the server. :meth:`stop` is abrupt: the
    serve task is cancelled without uvicorn's graceful drain, the listening
    socket is closed and open client transports are aborted. It returns only
    after the thread has exited, so the port is free by then.

    Example::

        sock = bind_listener(find_available_port())
        listener = BackgroundListener(app, sock)
        listener.start()
        ...
        listener.stop()
    """

    def __init__(
        self,
        app: ASGIApp,
        sock: socket.socket,
        *,
        ready_timeout: float = DEFAULT_READY_TIMEOUT,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        logger: StructuredLogger | None = None,
    ) -> None:
        super().__init__()
        self._app = app
        self._sock = sock
        self._host, self._port = sock.getsockname()[:2]
        self._ready_timeout = ready_timeout
        self._shutdown_timeout = shutdown_timeout
        self._logger = (logger or get_logger(__name__)).bind(port=self._port)
        self._ready = threading.Event()
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None
        self._started = False
        self._stop_requested = False
        self._error: BaseException | None = None

    @property
    def port(self) -> int:
        return self._port

    @property
    def running(self) -> bool:
        """True while the listener thread is alive."""
        thread = self._thread
        return thread is not None and thread.is_alive()

    @property
    def error(self) -> BaseException | None:
        """The failure that ended the listener, if it did not stop cleanly."""
        return self._error

    def start(self) -> None:
        """Spawn the listener thread and wait until it accepts connections.

        Raises:
            ListenerBindError: If uvicorn fails to start serving, or does not
                report readiness within ``ready_timeout`` seconds.
        """
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run,
            name=f"servelite-listener-{self._port}",
            daemon=True,
        )
        self._thread.start()

        ready = self._ready.wait(timeout=self._ready_timeout)
        if ready and self._started:
            self._logger.info(
                "Listener accepting connections",
                event="listener.start",
                context={"host": self._host},
            )
            return

        self.stop()
        if not ready:
            msg = f"Listener on port {self._port} did not start within {self._ready_timeout}s"
        else:
            msg = f"Listener on port {self._port} failed to start: {self._error!r}"
        raise ListenerBindError(msg) from self._error

    def stop(self) -> None:
        """Cancel the serve task and join the listener thread. Idempotent."""
        thread = self._thread
        if thread is None:
            self._sock.close()
            return
        self._stop_requested = True
        loop, task = self._loop, self._task
        if loop is not None and task is not None and not loop.is_closed():
            try:
                _ = loop.call_soon_threadsafe(task.cancel)
            except RuntimeError:
                # Loop closed between the check and the call: thread is exiting.
                pass
        thread.join(timeout=self._shutdown_timeout)
        if thread.is_alive():
            self._logger.warning(
                "Listener thread did not exit in time",
                event="listener.stop_timeout",
                context={"timeout": self._shutdown_timeout},
            )
        self._sock.close()
        self._logger.info("Listener stopped", event="listener.stop")

    def _run(self) -> None:
        try:
            asyncio.run(self._serve())
        except asyncio.CancelledError:
            if not self._stop_requested:
                self._error = RuntimeError("Listener task cancelled unexpectedly")
        except SystemExit as error:
            # uvicorn exits the process on startup failures; contain it here.
            self._error = error
            self._logger.error(
                "Listener failed to start",
                event="listener.error",
                context={"code": error.code},
            )
        except Exception as error:
            self._error = error
            self._logger.exception(
                "Listener crashed",
                event="listener.error",
                context={"error": repr(error)},
            )
        else:
            if not self._stop_requested:
                self._error = RuntimeError("Listener exited unexpectedly")
        finally:
            self._sock.close()
            self._ready.set()

    async def _serve(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.current_task()
        # A stop() that ran before the loop existed had nothing to cancel.
        if self._stop_requested:
            return
        config = uvicorn.Config(
            self._app,
            host=self._host,
            port=self._port,
            lifespan="off",
            log_config=None,
        )
        server = uvicorn.Server(config)
        serving = asyncio.create_task(server.serve(sockets=[self._sock]))
        try:
            while not server.started and not serving.done():
                await asyncio.sleep(_STARTUP_POLL_INTERVAL)
            self._started = server.started
            self._ready.set()
            await serving
        finally:
            _ = serving.cancel()
            _ = await asyncio.gather(serving, return_exceptions=True)
            _abort(server)


def _abort(server: uvicorn.Server) -> None:
    """Close listening sockets and drop client connections without draining."""
    for listening in server.servers:
        listening.close()
    for connection in list(server.server_state.connections):
        transport = getattr(connection, "transport", None)
        if isinstance(transport, asyncio.Transport):
            transport.abort()


__all__ = [
    "DEFAULT_READY_TIMEOUT",
    "DEFAULT_SHUTDOWN_TIMEOUT",
    "BackgroundListener",
]
