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

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from servelite.server import ReloadBroadcaster, SessionManager
from tests.helpers import free_port, write_site

pytest_plugins = ["tests.plugins.threadstress"]


@pytest.fixture
def site_root(tmp_path: Path) -> Path:
    """Return a directory holding a small static site."""

    return write_site(tmp_path / "site")


@pytest.fixture
def broadcaster() -> Iterator[ReloadBroadcaster]:
    channel = ReloadBroadcaster(capacity=8)
    try:
        yield channel
    finally:
        channel.close()


@pytest.fixture
def manager() -> Iterator[SessionManager]:
    """Return a session manager probing from a fresh port, closed on teardown."""

    with SessionManager(
        preferred_port=free_port(), ready_timeout=10.0
    ) as session_manager:
        yield session_manager
