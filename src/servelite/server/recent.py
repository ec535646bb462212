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

"""Bounded most-recently-used directory list."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from pathlib import Path

MAX_RECENT_DIRS = 5


class RecentDirectories:
    """Most-recent-first list of served directories, deduplicated by path.

    Not synchronized: the owning :class:`~servelite.server.session.SessionManager`
    mutates it under its session lock.

    Example::

        recent = RecentDirectories()
        for name in "ABCDE":
            recent.add(Path(name))
        recent.add(Path("C"))
        assert recent.snapshot() == tuple(map(Path, "CEDBA"))
    """

    def __init__(self, capacity: int = MAX_RECENT_DIRS) -> None:
        super().__init__()
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._entries: deque[Path] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    def add(self, path: Path) -> None:
        """Move ``path`` to the front, evicting the oldest entry when full."""
        try:
            self._entries.remove(path)
        except ValueError:
            if len(self._entries) >= self._capacity:
                _ = self._entries.pop()
        self._entries.appendleft(path)

    def snapshot(self) -> tuple[Path, ...]:
        return tuple(self._entries)

    def __getitem__(self, index: int) -> Path:
        return self._entries[index]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Path]:
        return iter(tuple(self._entries))


__all__ = ["MAX_RECENT_DIRS", "RecentDirectories"]
