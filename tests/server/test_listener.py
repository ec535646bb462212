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

"""Tests for the background uvicorn listener."""

from __future__ import annotations

import threading
from pathlib import Path

import httpx
import pytest
from websockets.exceptions import ConnectionClosed
from websockets.sync.client import connect

from servelite.errors import ListenerBindError
from servelite.server.app import RELOAD_PATH, build_app
from servelite.server.broadcast import ReloadBroadcaster
from servelite.server.listener import BackgroundListener
from servelite.server.ports import bind_listener
from tests.helpers import free_port, listener_threads, port_is_free


def _listener(site_root: Path, broadcaster: ReloadBroadcaster) -> BackgroundListener:
    sock = bind_listener(free_port())
    return BackgroundListener(
        build_app(site_root, broadcaster), sock, ready_timeout=10.0
    )


def test_listener_serves_until_stopped(
    site_root: Path, broadcaster: ReloadBroadcaster
) -> None:
    listener = _listener(site_root, broadcaster)
    listener.start()
    port = listener.port
    try:
        assert listener.running
        response = httpx.get(f"http://127.0.0.1:{port}/app.js", timeout=5.0)
        assert response.status_code == 200
    finally:
        listener.stop()

    assert not listener.running
    assert listener.error is None
    assert port_is_free(port)
    assert f"servelite-listener-{port}" not in {t.name for t in listener_threads()}
    with pytest.raises(httpx.ConnectError):
        _ = httpx.get(f"http://127.0.0.1:{port}/app.js", timeout=1.0)


def test_listener_start_and_stop_are_idempotent(
    site_root: Path, broadcaster: ReloadBroadcaster
) -> None:
    listener = _listener(site_root, broadcaster)

    listener.start()
    listener.start()
    listener.stop()
    listener.stop()

    assert not listener.running
    assert port_is_free(listener.port)


def test_stop_before_start_releases_socket(
    site_root: Path, broadcaster: ReloadBroadcaster
) -> None:
    listener = _listener(site_root, broadcaster)

    listener.stop()

    assert not listener.running
    assert port_is_free(listener.port)


def test_stop_drops_open_websocket_connections(
    site_root: Path, broadcaster: ReloadBroadcaster
) -> None:
    listener = _listener(site_root, broadcaster)
    listener.start()
    try:
        with connect(f"ws://127.0.0.1:{listener.port}{RELOAD_PATH}") as websocket:
            listener.stop()
            with pytest.raises(ConnectionClosed):
                _ = websocket.recv(timeout=5.0)
    finally:
        listener.stop()

    assert port_is_free(listener.port)


def test_start_failure_raises_bind_error(
    site_root: Path, broadcaster: ReloadBroadcaster
) -> None:
    sock = bind_listener(free_port())
    listener = BackgroundListener(
        build_app(site_root, broadcaster), sock, ready_timeout=10.0
    )
    sock.close()

    with pytest.raises(ListenerBindError) as excinfo:
        listener.start()

    assert str(listener.port) in str(excinfo.value)
    assert listener.error is not None
    assert not listener.running


def test_stop_requested_before_serving_begins_is_honoured(
    site_root: Path, broadcaster: ReloadBroadcaster
) -> None:
    listener = _listener(site_root, broadcaster)
    # The state stop() leaves when its ready wait expired before the listener
    # thread created its event loop.
    listener._stop_requested = True  # pyright: ignore[reportPrivateUsage]
    thread = threading.Thread(
        target=listener._run,  # pyright: ignore[reportPrivateUsage]
        name="servelite-listener-late",
        daemon=True,
    )

    thread.start()
    thread.join(timeout=5.0)

    alive = thread.is_alive()
    if alive:
        listener.stop()
    assert not alive
    assert not listener.running
    assert listener.error is None
    assert port_is_free(listener.port)
