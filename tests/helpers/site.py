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

"""Static site fixtures written to temporary directories."""

from __future__ import annotations

from pathlib import Path

INDEX_HTML = "<!doctype html><h1>home</h1>"
SCRIPT_JS = "console.log('ready');"


def write_site(root: Path, *, title: str = "home") -> Path:
    """Create root with an index page, a script and a nested page."""
    root.mkdir(parents=True, exist_ok=True)
    _ = (root / "index.html").write_text(
        INDEX_HTML.replace("home", title), encoding="utf-8"
    )
    _ = (root / "app.js").write_text(SCRIPT_JS, encoding="utf-8")
    nested = root / "docs"
    nested.mkdir(exist_ok=True)
    _ = (nested / "index.html").write_text("<h1>docs</h1>", encoding="utf-8")
    return root
