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

"""Polling used where the engine must block on state owned by another thread.

The listener and watcher run on their own threads, so foreground code (the
command line's wait loop and the test suite) observes them by polling a
predicate rather than joining.
"""

from __future__ import annotations

import time
from collections.abc import Callable


def wait_until(
    predicate: Callable[[], bool],
    *,
    timeout: float | None,
    poll_interval: float = 0.01,
) -> bool:
    """Poll ``predicate`` until it holds.

    ``timeout=None`` polls with no deadline, so only the predicate (or an
    exception such as ``KeyboardInterrupt`` raised while sleeping) ends the
    wait. Otherwise the predicate gets one final check once the deadline has
    passed and its result is returned.
    """
    if poll_interval <= 0:
        msg = "poll_interval must be positive"
        raise ValueError(msg)
    deadline = None if timeout is None else time.monotonic() + timeout
    while not predicate():
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return predicate()
            time.sleep(min(poll_interval, remaining))
        else:
            time.sleep(poll_interval)
    return True


__all__ = ["wait_until"]
