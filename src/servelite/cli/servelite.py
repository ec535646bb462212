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

"""Command line entry point for the ``servelite`` executable.

The desktop tray drives a :class:`~servelite.server.SessionManager` directly;
this entry point covers ``--version`` and a headless mode that serves one
directory until interrupted.
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from .._version import version_banner
from ..errors import ServeLiteError
from ..runtime.lifecycle import wait_until
from ..runtime.logging import StructuredLogger, configure_logging, get_logger
from ..server import SessionManager
from .config import ConfigError, ServeLiteConfig, load_config

_POLL_INTERVAL = 0.5


def main(argv: Sequence[str] | None = None) -> int:
    """Run the servelite CLI."""

    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:  # argparse exits 0 for --version, 2 on errors
        code = exc.code if isinstance(exc.code, int) else 2
        return int(code)

    if args.directory is None:
        parser.print_usage(sys.stderr)
        return 2

    configure_logging(level=args.log_level, json_mode=args.json_logs)
    logger = get_logger(__name__)

    try:
        config = load_config(
            args.config,
            {"preferred_port": args.port, "max_port_tries": args.max_port_tries},
        )
    except ConfigError as error:
        logger.error(
            "Invalid configuration",
            event="cli.config_error",
            context={"error": str(error)},
        )
        print(str(error), file=sys.stderr)
        return 2

    return _run_headless(Path(args.directory), config, logger)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="servelite",
        description="Serve a directory on localhost with live reload.",
    )
    _ = parser.add_argument(
        "--version",
        action="version",
        version=version_banner(),
    )
    _ = parser.add_argument(
        "directory",
        nargs="?",
        default=None,
        help="Directory to serve until interrupted.",
    )
    _ = parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a TOML or YAML config file (default: ~/.config/servelite/config.toml).",
    )
    _ = parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Preferred port; the next free port is used when taken (default: 8000).",
    )
    _ = parser.add_argument(
        "--max-port-tries",
        type=int,
        default=None,
        help="How many consecutive ports to probe (default: 100).",
    )
    _ = parser.add_argument(
        "--log-level",
        choices=("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"),
        default=None,
        help="Override the log level.",
    )
    _ = parser.add_argument(
        "--json-logs",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Emit structured JSON logs.",
    )
    return parser


def _run_headless(
    directory: Path, config: ServeLiteConfig, logger: StructuredLogger
) -> int:
    with SessionManager(**config.session_options(), logger=logger) as manager:
        try:
            message = manager.start(directory)
        except ServeLiteError as error:
            print(str(error), file=sys.stderr)
            return 1

        print(message, flush=True)
        if wait_for_shutdown(manager):
            return 0

        logger.error(
            "Server stopped unexpectedly",
            event="cli.listener_exited",
            context={"directory": str(directory)},
        )
        return 1


def wait_for_shutdown(manager: SessionManager) -> bool:
    """Block until Ctrl+C (returns True) or the session dies (returns False)."""
    try:
        _ = wait_until(
            lambda: not manager.running, timeout=None, poll_interval=_POLL_INTERVAL
        )
    except KeyboardInterrupt:
        return True
    return False


__all__ = ["main", "wait_for_shutdown"]
