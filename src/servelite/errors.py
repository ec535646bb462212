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

"""Base exception hierarchy for :mod:`servelite`."""

from __future__ import annotations


class ServeLiteError(Exception):
    """Base class for all servelite exceptions.

    Session operations raise subclasses of this error for every expected
    failure, so callers (a tray menu, the CLI) can report any of them with a
    single handler. The ``str()`` of an instance is a short, user-facing
    description.

    Example:
        Reporting a start failure::

            try:
                message = manager.start(directory)
            except ServeLiteError as e:
                notify("Error", str(e))
            else:
                notify("Success", message)
    """


class InvalidRootError(ServeLiteError, ValueError):
    """Raised when the requested root directory does not exist.

    Raised before any watcher or listener is created, so a failed start leaves
    no partial state behind. Also inherits from ``ValueError``.
    """

    def __init__(self, path: object) -> None:
        super().__init__(f"Directory does not exist: {path}")
        self.path = path


class NoPortAvailableError(ServeLiteError, RuntimeError):
    """Raised when port probing exhausts its try budget.

    Example:
        Handling a crowded port range::

            try:
                port = find_available_port(8000, max_tries=10)
            except NoPortAvailableError as e:
                logger.error("No port: %s", e)
    """

    def __init__(self, preferred: int, max_tries: int) -> None:
        last = preferred + max_tries - 1
        super().__init__(f"No available port found in range {preferred}-{last}")
        self.preferred = preferred
        self.max_tries = max_tries


class WatchSetupError(ServeLiteError, RuntimeError):
    """Raised when the OS-level filesystem watch cannot be registered.

    Common causes are exhausted inotify watch limits or a root that vanished
    between validation and registration.
    """


class ListenerBindError(ServeLiteError, RuntimeError):
    """Raised when the listener cannot bind or start on the chosen port.

    Port probing releases the probe socket before the real bind, so another
    process may grab the port in between. That race surfaces as this error
    rather than as a crash.
    """


class NotRunningError(ServeLiteError, RuntimeError):
    """Raised when stopping a session that is not running.

    This is a pure failure: no state is touched when it is raised.
    """

    def __init__(self) -> None:
        super().__init__("Server not running")


__all__ = [
    "InvalidRootError",
    "ListenerBindError",
    "NoPortAvailableError",
    "NotRunningError",
    "ServeLiteError",
    "WatchSetupError",
]
