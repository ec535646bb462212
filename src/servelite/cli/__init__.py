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

"""Command line surface and configuration loading."""

from __future__ import annotations

from . import config, servelite
from .config import ConfigError, ServeLiteConfig, load_config
from .servelite import main

__all__ = [
    "ConfigError",
    "ServeLiteConfig",
    "config",
    "load_config",
    "main",
    "servelite",
]
