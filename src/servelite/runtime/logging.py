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

"""Structured logging helpers for :mod:`servelite`."""

from __future__ import annotations

import json
import logging
import logging.config
import os
from collections.abc import Mapping, MutableMapping
from datetime import UTC, datetime
from typing import Any, cast, override

__all__ = [
    "StructuredLogger",
    "configure_logging",
    "get_logger",
]

_LOG_LEVEL_ENV = "SERVELITE_LOG_LEVEL"
_LOG_FORMAT_ENV = "SERVELITE_LOG_FORMAT"
_LEVEL_NAMES = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
    "NOTSET": logging.NOTSET,
}
# uvicorn emits one record per request on this logger.
_ACCESS_LOGGER = "uvicorn.access"


class StructuredLogger(logging.LoggerAdapter[logging.Logger]):
    """Logger adapter enforcing a minimal ``event`` + ``context`` schema.

    Every call must name an ``event``; keyword ``context`` and any ``extra``
    keys are folded into a single ``context`` mapping on the record.
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        context: Mapping[str, object] | None = None,
    ) -> None:
        base_context = dict(context) if context is not None else {}
        super().__init__(logger, base_context)

    def bind(self, **context: object) -> StructuredLogger:
        """Return a new adapter with ``context`` merged into the baseline payload."""

        base_extra = cast(Mapping[str, object], self.extra)
        merged: dict[str, object] = {**dict(base_extra), **context}
        return type(self)(self.logger, context=merged)

    @override
    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        extra_obj = kwargs.get("extra")
        extra_mapping: dict[str, object] = (
            dict(cast(Mapping[str, object], extra_obj))
            if isinstance(extra_obj, Mapping)
            else {}
        )

        context_payload: dict[str, object] = dict(
            cast(Mapping[str, object], self.extra)
        )
        inline_context = kwargs.pop("context", None)
        if inline_context is not None:
            if not isinstance(inline_context, Mapping):
                raise TypeError("context must be a mapping when provided.")
            context_payload.update(cast(Mapping[str, object], inline_context))

        event_obj = kwargs.pop("event", None)
        if event_obj is None:
            event_obj = extra_mapping.pop("event", None)
        if not isinstance(event_obj, str):
            raise TypeError("Structured logs require an 'event' field.")
        extra_mapping.pop("event", None)
        context_payload.update(extra_mapping)

        kwargs["extra"] = {"event": event_obj, "context": context_payload}
        return msg, kwargs


def get_logger(
    name: str,
    *,
    context: Mapping[str, object] | None = None,
) -> StructuredLogger:
    """Return a :class:`StructuredLogger` scoped to ``name``."""

    return StructuredLogger(logging.getLogger(name), context=context)


def configure_logging(
    *,
    level: int | str | None = None,
    json_mode: bool | None = None,
    env: Mapping[str, str] | None = None,
    force: bool = False,
) -> None:
    """Configure the root logger for the servelite process.

    ``level`` and ``json_mode`` can be supplied directly or via the
    ``SERVELITE_LOG_LEVEL`` and ``SERVELITE_LOG_FORMAT`` environment variables
    (``json`` enables structured output, anything else keeps the text
    formatter). uvicorn's per-request access log is held at ``WARNING``
    unless debugging.

    Existing handlers installed by a host application are left alone unless
    ``force=True`` is supplied; only the level is adjusted.
    """

    env = os.environ if env is None else env

    resolved_level = _coerce_level(level or env.get(_LOG_LEVEL_ENV) or logging.INFO)

    if json_mode is None:
        format_value = env.get(_LOG_FORMAT_ENV)
        json_mode = format_value is not None and format_value.lower() == "json"

    root_logger = logging.getLogger()

    if root_logger.handlers and not force:
        root_logger.setLevel(resolved_level)
        return

    access_level = logging.DEBUG if resolved_level <= logging.DEBUG else logging.WARNING
    formatter_key = "json" if json_mode else "text"
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "text": {
                    "()": "servelite.runtime.logging._TextFormatter",
                    "fmt": "%(asctime)s %(levelname)s %(name)s %(event)s %(message)s %(context)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                },
                "json": {
                    "()": "servelite.runtime.logging._JsonFormatter",
                },
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "formatter": formatter_key,
                }
            },
            "loggers": {
                _ACCESS_LOGGER: {"level": access_level},
            },
            "root": {
                "handlers": ["stderr"],
                "level": resolved_level,
            },
        }
    )


class _TextFormatter(logging.Formatter):
    """Text formatter tolerating records emitted by third-party loggers."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "event"):
            record.event = record.name
        if not hasattr(record, "context"):
            record.context = {}
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """Formatter that renders structured records as compact JSON."""

    @override
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if event is not None:
            payload["event"] = event
        context = getattr(record, "context", None)
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_default, separators=(",", ":"))


def _json_default(value: Any) -> Any:  # noqa: ANN401
    """Fallback serializer: paths and other objects render as ``str``."""

    return str(value)


def _coerce_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        try:
            return _LEVEL_NAMES[level.upper()]
        except KeyError:
            raise TypeError(f"Unknown log level: {level!r}") from None
    return logging.INFO
