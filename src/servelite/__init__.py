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

"""Local development file server with live reload."""

from __future__ import annotations

from . import cli, errors, runtime, server
from ._version import APP_NAME, __version__
from .errors import ServeLiteError
from .server import SessionManager, SessionSnapshot

__all__ = [
    "APP_NAME",
    "ServeLiteError",
    "SessionManager",
    "SessionSnapshot",
    "__version__",
    "cli",
    "errors",
    "runtime",
    "server",
]
