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

"""Loopback port probing and binding."""

from __future__ import annotations

import os
import socket

from ..errors import ListenerBindError, NoPortAvailableError
from ..runtime.logging import StructuredLogger, get_logger

LOOPBACK_HOST = "127.0.0.1"
DEFAULT_PORT = 8000
MAX_PORT_TRIES = 100
_MAX_PORT = 65535

logger: StructuredLogger = get_logger(__name__)


def find_available_port(
    preferred: int = DEFAULT_PORT,
    max_tries: int = MAX_PORT_TRIES,
    *,
    host: str = LOOPBACK_HOST,
) -> int:
    """Return the first port at or above ``preferred`` that can be bound.

    Each candidate is probed by binding a throwaway socket and closing it
    immediately, so the result may be taken by someone else before the caller
    binds it for real (see :func:`bind_listener`).

    Raises:
        NoPortAvailableError: If none of the ``max_tries`` candidates binds.
    """

    last = min(preferred + max_tries, _MAX_PORT + 1)
    for port in range(preferred, last):
        if _probe(host, port):
            logger.debug(
                "Selected listening port",
                event="ports.selected",
                context={"port": port, "preferred": preferred},
            )
            return port
    raise NoPortAvailableError(preferred, max_tries)


def bind_listener(port: int, *, host: str = LOOPBACK_HOST) -> socket.socket:
    """Bind a listening-ready TCP socket on ``host:port``.

    The socket is returned bound but not yet listening; the server calls
    ``listen()`` when it starts serving.

    Raises:
        ListenerBindError: If the bind fails, typically because the port was
            claimed after :func:`find_available_port` probed it.
    """

    sock = _new_socket()
    try:
        sock.bind((host, port))
    except OSError as error:
        sock.close()
        raise ListenerBindError(
            f"Failed to bind {host}:{port}: {error.strerror or error}"
        ) from error
    return sock


def _probe(host: str, port: int) -> bool:
    with _new_socket() as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def _new_socket() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    # A closed listener's connections in TIME_WAIT must not block a rebind.
    if os.name == "posix":
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    return sock


__all__ = [
    "DEFAULT_PORT",
    "LOOPBACK_HOST",
    "MAX_PORT_TRIES",
    "bind_listener",
    "find_available_port",
]
