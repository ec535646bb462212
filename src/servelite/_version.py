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

"""Application name and version."""

from __future__ import annotations

APP_NAME = "ServeLite"
__version__ = "0.1.0"


def version_banner() -> str:
    """Return the ``--version`` output, e.g. ``ServeLite v0.1.0``."""
    return f"{APP_NAME} v{__version__}"
