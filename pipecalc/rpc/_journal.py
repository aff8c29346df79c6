# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Append-only transaction log.

One human-readable line per completed transaction, plus start/stop banners::

    === Server Started (PID: 4100) ===
    [PID 4107] Client PID: 4201 | Operation: add(2, 3) | Result: 5
    [PID 4112] Client PID: 4201 | Operation: div(7, 0) | Error: Division by zero
    === Server Stopped (PID: 4100) ===

The file is opened and closed around every write, and each line goes out in
a single ``write`` on an ``O_APPEND`` descriptor, so concurrent workers
interleave whole lines and an abruptly killed process leaves no buffered
tail behind.  The format is free text; nothing parses it.
"""

from __future__ import annotations

import os
from pathlib import Path

from pipecalc.rpc._common import _worker_logger
from pipecalc.rpc._wire import Request, Response

__all__ = ["TransactionLog", "format_transaction"]


def format_transaction(request: Request, response: Response, worker_pid: int) -> str:
    """Render one transaction as a log line (without trailing newline)."""
    head = (
        f"[PID {worker_pid}] Client PID: {request.client_id} | "
        f"Operation: {request.operation}({request.operand1}, {request.operand2}) | "
    )
    if response.error_flag:
        return head + f"Error: {response.error_message}"
    return head + f"Result: {response.result}"


class TransactionLog:
    """Append-only text log shared by the server and its workers."""

    __slots__ = ("_path",)

    def __init__(self, path: Path) -> None:
        """Initialize for the log file at *path* (created on first write)."""
        self._path = path

    @property
    def path(self) -> Path:
        """Location of the log file."""
        return self._path

    def _append(self, line: str) -> None:
        fd = os.open(self._path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
        try:
            os.write(fd, (line + "\n").encode("utf-8"))
        finally:
            os.close(fd)

    def start(self, pid: int) -> None:
        """Append the startup banner.

        Doubles as the writability check, so the ``OSError`` of an
        unwritable log propagates to the caller.
        """
        self._append(f"\n=== Server Started (PID: {pid}) ===")

    def stop(self, pid: int) -> None:
        """Append the shutdown banner."""
        self._append(f"=== Server Stopped (PID: {pid}) ===")

    def record(self, request: Request, response: Response, worker_pid: int) -> bool:
        """Append one transaction line.

        A failed append is reported on the worker logger and does not stop
        the worker from replying.

        Returns:
            Whether the line was written.

        """
        try:
            self._append(format_transaction(request, response, worker_pid))
        except OSError as exc:
            _worker_logger.error("Cannot append to transaction log %s: %s", self._path, exc)
            return False
        return True
