# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Logging setup for the ``pipecalc`` logger hierarchy.

Provides :class:`PipecalcJsonFormatter`, a :class:`logging.Formatter`
subclass that serializes records as single-line JSON objects including every
``extra`` field such as ``client_id`` or ``worker_pid``, and
:func:`configure_logging`, used by the CLI to attach a stderr handler to the
package root or to selected loggers.

The library itself only installs a ``NullHandler``; nothing here runs unless
the CLI (or an application) asks for it::

    from pipecalc.logging_utils import configure_logging

    configure_logging(logging.DEBUG, loggers=["pipecalc.wire.transport"])
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Sequence
from typing import TextIO

__all__ = ["KNOWN_LOGGERS", "PipecalcJsonFormatter", "configure_logging"]

KNOWN_LOGGERS: tuple[tuple[str, str, str], ...] = (
    ("pipecalc", "Package root", "Enable everything at once"),
    ("pipecalc.server", "Dispatcher and lifecycle", "Startup, shutdown, received requests, forks, reaping"),
    ("pipecalc.worker", "Per-request workers", "Undeliverable responses, log append failures"),
    ("pipecalc.client", "Client round trips", "What a client sent and received"),
    ("pipecalc.wire.request", "Request codec", "Decoding problems with request records"),
    ("pipecalc.wire.response", "Response codec", "Decoding problems with response records"),
    ("pipecalc.wire.transport", "Conduit lifecycle", "FIFO creation, opens, rotation, raw blocks"),
)
"""``(name, description, scenario)`` for every logger pipecalc emits on."""

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_RECORD_ATTRS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}
"""Attributes every record carries; whatever else is on a record came from ``extra``."""

_OUTPUT_KEYS = ("timestamp", "level", "logger", "pid", "message", "exception", "stack_info")


def _extra_fields(record: logging.LogRecord) -> dict[str, object]:
    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and key not in _OUTPUT_KEYS
    }


class PipecalcJsonFormatter(logging.Formatter):
    """One JSON object per line, carrying the record's ``extra`` fields.

    The server and its forked workers usually share one stderr, so every
    line names the emitting process under ``pid`` next to ``timestamp``,
    ``level``, ``logger`` and ``message``.  An ``extra`` field that
    collides with one of these keys is dropped.  Values JSON cannot encode
    are written as their ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Render *record* as a single line of JSON."""
        record.message = record.getMessage()
        line: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "pid": record.process,
            "message": record.message,
        }
        line.update(_extra_fields(record))
        if record.exc_info and record.exc_info[1]:
            line["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            line["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(line, default=str)


def configure_logging(
    level: int,
    *,
    loggers: Sequence[str] = (),
    json_format: bool = False,
    stream: TextIO | None = None,
) -> list[logging.Logger]:
    """Attach one stderr handler to each target logger and set its level.

    Args:
        level: Level for the targeted loggers.
        loggers: Logger names to configure; the package root ``pipecalc``
            when empty.
        json_format: Use :class:`PipecalcJsonFormatter` instead of the
            plain text format.
        stream: Destination stream, ``sys.stderr`` by default.

    Returns:
        The configured loggers.

    """
    formatter: logging.Formatter = PipecalcJsonFormatter() if json_format else logging.Formatter(_TEXT_FORMAT)
    configured: list[logging.Logger] = []
    for name in loggers or ("pipecalc",):
        handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
        handler.setFormatter(formatter)
        logger = logging.getLogger(name)
        logger.addHandler(handler)
        logger.setLevel(level)
        configured.append(logger)
    return configured
