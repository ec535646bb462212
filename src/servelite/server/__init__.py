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

"""Live-reload server session engine."""

from __future__ import annotations

from .app import RELOAD_PATH, build_app
from .broadcast import RELOAD_MESSAGE, BroadcastClosed, ReloadBroadcaster, Subscription
from .listener import BackgroundListener
from .ports import DEFAULT_PORT, LOOPBACK_HOST, MAX_PORT_TRIES, bind_listener, find_available_port
from .recent import MAX_RECENT_DIRS, RecentDirectories
from .session import SessionManager, SessionSnapshot, SessionState, format_url
from .watcher import ChangeWatcher

__all__ = [
    "DEFAULT_PORT",
    "LOOPBACK_HOST",
    "MAX_PORT_TRIES",
    "MAX_RECENT_DIRS",
    "RELOAD_MESSAGE",
    "RELOAD_PATH",
    "BackgroundListener",
    "BroadcastClosed",
    "ChangeWatcher",
    "RecentDirectories",
    "ReloadBroadcaster",
    "SessionManager",
    "SessionSnapshot",
    "SessionState",
    "Subscription",
    "bind_listener",
    "build_app",
    "find_available_port",
    "format_url",
]
