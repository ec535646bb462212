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

"""Session lifecycle: one live-reload server per manager, start/stop serialized.

The :class:`SessionManager` owns the only mutable state of the server engine:
the active root, the bound port, the listener, the watcher and the reload
broadcaster. Every transition runs under a single lock, so a concurrent
``start`` and ``stop`` each observe a consistent before/after state and two
sessions never overlap. A session is created as one unit and torn down as
one unit; a failure halfway through ``start`` releases everything the attempt
created before the error propagates.

Example::

    manager = SessionManager()
    message = manager.start(Path("~/site").expanduser())
    print(message)  # Server started at http://localhost:8000
    print(manager.snapshot().url)
    manager.stop()
"""

from __future__ import annotations

import threading
from contextlib import ExitStack
from dataclasses import dataclass
from enum import StrEnum
from os import PathLike
from pathlib import Path
from types import TracebackType
from typing import Self

from ..errors import InvalidRootError, NotRunningError
from ..runtime.logging import StructuredLogger, get_logger
from .app import build_app
from .broadcast import DEFAULT_CAPACITY, ReloadBroadcaster
from .listener import (
    DEFAULT_READY_TIMEOUT,
    DEFAULT_SHUTDOWN_TIMEOUT,
    BackgroundListener,
)
from .ports import (
    DEFAULT_PORT,
    LOOPBACK_HOST,
    MAX_PORT_TRIES,
    bind_listener,
    find_available_port,
)
from .recent import MAX_RECENT_DIRS, RecentDirectories
from .watcher import ChangeWatcher


class SessionState(StrEnum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


def format_url(port: int) -> str:
    """Return the browser URL for a session bound to ``port``."""
    return f"http://localhost:{port}"


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Read-only view of a manager for menus, clipboard and status output."""

    state: SessionState
    root: Path | None
    port: int | None
    recent_directories: tuple[Path, ...]

    @property
    def running(self) -> bool:
        return self.state is SessionState.RUNNING

    @property
    def url(self) -> str | None:
        if self.port is None:
            return None
        return format_url(self.port)


@dataclass(slots=True)
class _ActiveSession:
    root: Path
    port: int
    broadcaster: ReloadBroadcaster
    watcher: ChangeWatcher
    listener: BackgroundListener


class SessionManager:
    """Owns the single server session and serializes its transitions."""

    def __init__(
        self,
        *,
        preferred_port: int = DEFAULT_PORT,
        max_port_tries: int = MAX_PORT_TRIES,
        broadcast_capacity: int = DEFAULT_CAPACITY,
        ready_timeout: float = DEFAULT_READY_TIMEOUT,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        recent_capacity: int = MAX_RECENT_DIRS,
        logger: StructuredLogger | None = None,
    ) -> None:
        super().__init__()
        self._preferred_port = preferred_port
        self._max_port_tries = max_port_tries
        self._broadcast_capacity = broadcast_capacity
        self._ready_timeout = ready_timeout
        self._shutdown_timeout = shutdown_timeout
        self._logger = logger or get_logger(__name__)
        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._active: _ActiveSession | None = None
        self._recent = RecentDirectories(recent_capacity)

    def start(self, directory: str | PathLike[str]) -> str:
        """Serve ``directory``, replacing any running session.

        The directory is validated first; an invalid request leaves a running
        session untouched. Otherwise the running session is fully stopped
        (port released, watcher released) before the new one is built.

        Returns:
            A human-readable message including the serving URL.

        Raises:
            InvalidRootError: If ``directory`` is not an existing directory.
            WatchSetupError: If the filesystem watch cannot be registered.
            NoPortAvailableError: If no port in the configured range binds.
            ListenerBindError: If the listener fails to bind or start.
        """
        root = _resolve_root(directory)
        with self._lock:
            self._reconcile()
            if self._active is not None:
                self._teardown(reason="restart")

            self._state = SessionState.STARTING
            self._logger.info(
                "Starting server",
                event="session.start",
                context={"root": str(root)},
            )
            try:
                active = self._launch(root)
            except Exception as error:
                self._state = SessionState.IDLE
                self._logger.error(
                    "Server failed to start",
                    event="session.start_failed",
                    context={"root": str(root), "error": str(error)},
                )
                raise

            self._active = active
            self._state = SessionState.RUNNING
            self._recent.add(root)
            url = format_url(active.port)
            self._logger.info(
                "Server started",
                event="session.started",
                context={"root": str(root), "port": active.port, "url": url},
            )
            return f"Server started at {url}"

    def start_recent(self, index: int) -> str:
        """Start a session on the ``index``-th most recent directory.

        Raises:
            IndexError: If there is no such entry.
        """
        with self._lock:
            directory = self._recent[index]
        return self.start(directory)

    def stop(self) -> None:
        """Stop the running session and wait until its port is released.

        Raises:
            NotRunningError: If no session is running. Nothing is changed.
        """
        with self._lock:
            self._reconcile()
            if self._active is None:
                raise NotRunningError()
            self._teardown(reason="stop")

    def close(self) -> None:
        """Stop the running session if there is one."""
        with self._lock:
            self._reconcile()
            if self._active is not None:
                self._teardown(reason="close")

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            self._reconcile()
            active = self._active
            return SessionSnapshot(
                state=self._state,
                root=active.root if active is not None else None,
                port=active.port if active is not None else None,
                recent_directories=self._recent.snapshot(),
            )

    @property
    def running(self) -> bool:
        return self.snapshot().running

    @property
    def url(self) -> str | None:
        return self.snapshot().url

    @property
    def recent_directories(self) -> tuple[Path, ...]:
        return self.snapshot().recent_directories

    def _launch(self, root: Path) -> _ActiveSession:
        with ExitStack() as cleanup:
            broadcaster = ReloadBroadcaster(self._broadcast_capacity)
            cleanup.callback(broadcaster.close)

            watcher = ChangeWatcher(root, broadcaster.publish, logger=self._logger)
            watcher.start()
            cleanup.callback(watcher.stop)

            app = build_app(root, broadcaster, logger=self._logger)
            port = find_available_port(
                self._preferred_port, self._max_port_tries, host=LOOPBACK_HOST
            )
            sock = bind_listener(port, host=LOOPBACK_HOST)
            cleanup.callback(sock.close)

            listener = BackgroundListener(
                app,
                sock,
                ready_timeout=self._ready_timeout,
                shutdown_timeout=self._shutdown_timeout,
                logger=self._logger,
            )
            listener.start()

            _ = cleanup.pop_all()
        return _ActiveSession(
            root=root,
            port=port,
            broadcaster=broadcaster,
            watcher=watcher,
            listener=listener,
        )

    def _teardown(self, *, reason: str) -> None:
        active = self._active
        if active is None:
            return
        self._state = SessionState.STOPPING
        try:
            # Callbacks run last-in first-out: listener, watcher, broadcaster.
            with ExitStack() as cleanup:
                cleanup.callback(active.broadcaster.close)
                cleanup.callback(active.watcher.stop)
                cleanup.callback(active.listener.stop)
        finally:
            self._active = None
            self._state = SessionState.IDLE
        self._logger.info(
            "Server stopped",
            event="session.stop",
            context={"root": str(active.root), "port": active.port, "reason": reason},
        )

    def _reconcile(self) -> None:
        active = self._active
        if active is None or active.listener.running:
            return
        self._logger.warning(
            "Listener exited on its own; releasing session",
            event="session.listener_exited",
            context={
                "root": str(active.root),
                "port": active.port,
                "error": repr(active.listener.error),
            },
        )
        self._teardown(reason="listener_exited")

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


def _resolve_root(directory: str | PathLike[str]) -> Path:
    path = Path(directory).expanduser()
    if not path.is_dir():
        raise InvalidRootError(path)
    return path.resolve()


__all__ = [
    "SessionManager",
    "SessionSnapshot",
    "SessionState",
    "format_url",
]
