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

"""Recursive filesystem change detection on top of :mod:`watchdog`."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from types import TracebackType
from typing import Self, override

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    FileModifiedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from ..errors import InvalidRootError, WatchSetupError
from ..runtime.logging import StructuredLogger, get_logger

ChangeCallback = Callable[[], object]
FileSignature = tuple[int, int]

_JOIN_TIMEOUT = 5.0
_FORGETTING_EVENTS = frozenset({EVENT_TYPE_CREATED, EVENT_TYPE_DELETED})


def is_modification(event: FileSystemEvent) -> bool:
    """Return True for event kinds that may mean "content under the root changed".

    File content modifications and moves (files or directories, including the
    rename step of an editor's atomic save) qualify. Creations, deletions,
    close notifications and the directory-modified events emitted for a
    parent when its entries change do not. Watchdog also reports attribute
    changes (chmod, chown) as file modifications; :class:`ChangeWatcher`
    filters those by comparing file signatures.
    """

    if isinstance(event, FileSystemMovedEvent):
        return True
    return isinstance(event, FileModifiedEvent)


def file_signature(path: str) -> FileSignature | None:
    """Return ``(st_mtime_ns, st_size)`` for ``path``, or None if it is gone."""
    try:
        stat = os.stat(path)
    except OSError:
        return None
    return stat.st_mtime_ns, stat.st_size


class _ModificationHandler(FileSystemEventHandler):
    def __init__(self, on_change: ChangeCallback, logger: StructuredLogger) -> None:
        super().__init__()
        self._on_change = on_change
        self._logger = logger
        # Only touched from the observer thread once the observer is running.
        self._signatures: dict[str, FileSignature] = {}

    def seed(self, directory: Path) -> None:
        """Record the signature of every file under ``directory``."""
        for dirpath, _, filenames in os.walk(directory):
            for name in filenames:
                path = os.path.join(dirpath, name)
                signature = file_signature(path)
                if signature is not None:
                    self._signatures[path] = signature

    def clear(self) -> None:
        self._signatures.clear()

    @override
    def on_any_event(self, event: FileSystemEvent) -> None:
        if not self._content_changed(event):
            return
        self._logger.debug(
            "Filesystem change detected",
            event="watcher.change",
            context={"kind": event.event_type, "path": event.src_path},
        )
        _ = self._on_change()

    def _content_changed(self, event: FileSystemEvent) -> bool:
        path = os.fsdecode(event.src_path)
        if isinstance(event, FileSystemMovedEvent):
            self._forget(path)
            destination = os.fsdecode(event.dest_path)
            signature = file_signature(destination)
            if signature is not None and not event.is_directory:
                self._signatures[destination] = signature
            return True
        if event.event_type in _FORGETTING_EVENTS:
            self._forget(path)
            return False
        if not is_modification(event):
            return False

        signature = file_signature(path)
        if signature is None:
            _ = self._signatures.pop(path, None)
            return True
        if self._signatures.get(path) == signature:
            # Same mtime and size: an attribute-only change.
            return False
        self._signatures[path] = signature
        return True

    def _forget(self, path: str) -> None:
        _ = self._signatures.pop(path, None)
        prefix = path.rstrip(os.sep) + os.sep
        for stale in [key for key in self._signatures if key.startswith(prefix)]:
            del self._signatures[stale]


class ChangeWatcher:
    """Watches a directory tree and invokes ``on_change`` per modification.

    The callback runs on the watchdog observer thread once per qualifying
    event; there is no debounce window. ``on_change`` must not block.

    Files under the root are fingerprinted by modification time and size when
    the watch starts. A modification event that leaves the fingerprint
    unchanged (chmod, chown) is ignored.

    Example::

        with ChangeWatcher(root, broadcaster.publish):
            ...  # serve until done
    """

    def __init__(
        self,
        directory: Path,
        on_change: ChangeCallback,
        *,
        logger: StructuredLogger | None = None,
    ) -> None:
        super().__init__()
        self._directory = directory
        self._on_change = on_change
        self._logger = (logger or get_logger(__name__)).bind(
            directory=str(directory)
        )
        self._observer: BaseObserver | None = None
        self._handler: _ModificationHandler | None = None

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def running(self) -> bool:
        observer = self._observer
        return observer is not None and observer.is_alive()

    def start(self) -> None:
        """Register the recursive watch and start the observer thread.

        Raises:
            InvalidRootError: If the directory does not exist.
            WatchSetupError: If the OS refuses the watch registration.
        """
        if self._observer is not None:
            return
        if not self._directory.is_dir():
            raise InvalidRootError(self._directory)

        observer = Observer()
        handler = _ModificationHandler(self._on_change, self._logger)
        try:
            _ = observer.schedule(handler, str(self._directory), recursive=True)
            handler.seed(self._directory)
            observer.start()
        except OSError as error:
            _stop_observer(observer)
            raise WatchSetupError(
                f"Failed to watch directory {self._directory}: {error}"
            ) from error

        self._observer = observer
        self._handler = handler
        self._logger.info("Watching directory", event="watcher.start")

    def stop(self) -> None:
        """Stop monitoring and join the observer thread. Idempotent."""
        observer, self._observer = self._observer, None
        handler, self._handler = self._handler, None
        if observer is None:
            return
        _stop_observer(observer)
        if handler is not None:
            handler.clear()
        self._logger.info("Stopped watching directory", event="watcher.stop")

    def __enter__(self) -> Self:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.stop()


def _stop_observer(observer: BaseObserver) -> None:
    observer.unschedule_all()
    observer.stop()
    if observer.is_alive():
        observer.join(timeout=_JOIN_TIMEOUT)


__all__ = [
    "ChangeCallback",
    "ChangeWatcher",
    "FileSignature",
    "file_signature",
    "is_modification",
]
