# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Signal handling for the dispatch loop.

Handlers never do real work: SIGTERM/SIGINT set the shutdown flag and
SIGCHLD marks a reap as pending.  ``signal.set_wakeup_fd`` writes a byte to a
private pipe on every delivery, which ends the dispatcher's ``select`` wait
so the loop sees the flags promptly.  Reaping and cleanup run in the loop.
"""

from __future__ import annotations

import contextlib
import logging
import os
import signal
from types import FrameType

from pipecalc.rpc._common import _logger

__all__ = ["SignalController", "reap_workers"]

SHUTDOWN_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGTERM, signal.SIGINT)


def reap_workers() -> list[tuple[int, int]]:
    """Collect every terminated child without blocking.

    Returns:
        ``(pid, exit_code)`` pairs for the children that were reaped.

    """
    reaped: list[tuple[int, int]] = []
    while True:
        try:
            pid, status = os.waitpid(-1, os.WNOHANG)
        except ChildProcessError:
            break
        if pid == 0:
            break
        reaped.append((pid, os.waitstatus_to_exitcode(status)))
    return reaped


class SignalController:
    """Owns the server's signal dispositions and the wakeup pipe.

    Must be installed from the main thread.  ``uninstall()`` restores the
    dispositions that were in place before ``install()``.
    """

    __slots__ = ("_previous", "_previous_wakeup", "_reap_pending", "_shutdown_requested", "_wakeup_r", "_wakeup_w")

    def __init__(self) -> None:
        """Initialize with no handlers installed."""
        self._shutdown_requested = False
        self._reap_pending = False
        self._previous: dict[signal.Signals, object] = {}
        self._previous_wakeup = -1
        self._wakeup_r = -1
        self._wakeup_w = -1

    # -- flags --------------------------------------------------------------

    @property
    def shutdown_requested(self) -> bool:
        """Whether a termination signal (or ``request_shutdown``) has arrived."""
        return self._shutdown_requested

    def request_shutdown(self) -> None:
        """Set the cooperative shutdown flag."""
        self._shutdown_requested = True

    def take_reap_pending(self) -> bool:
        """Return and clear the SIGCHLD marker."""
        pending = self._reap_pending
        self._reap_pending = False
        return pending

    @property
    def wakeup_fd(self) -> int | None:
        """Read end of the wakeup pipe, or ``None`` when not installed."""
        return self._wakeup_r if self._wakeup_r >= 0 else None

    def drain_wakeup(self) -> None:
        """Discard pending wakeup bytes."""
        if self._wakeup_r < 0:
            return
        with contextlib.suppress(BlockingIOError):
            while os.read(self._wakeup_r, 512):
                pass

    # -- handlers -----------------------------------------------------------

    def _on_shutdown(self, signum: int, frame: FrameType | None) -> None:
        self._shutdown_requested = True

    def _on_child(self, signum: int, frame: FrameType | None) -> None:
        self._reap_pending = True

    def install(self) -> None:
        """Install handlers and the wakeup pipe."""
        self._wakeup_r, self._wakeup_w = os.pipe()
        os.set_blocking(self._wakeup_r, False)
        os.set_blocking(self._wakeup_w, False)
        self._previous_wakeup = signal.set_wakeup_fd(self._wakeup_w, warn_on_full_buffer=False)
        for sig in SHUTDOWN_SIGNALS:
            self._previous[sig] = signal.signal(sig, self._on_shutdown)
        self._previous[signal.SIGCHLD] = signal.signal(signal.SIGCHLD, self._on_child)
        if _logger.isEnabledFor(logging.DEBUG):
            _logger.debug("Signal handlers installed (wakeup fd %d)", self._wakeup_w)

    def uninstall(self) -> None:
        """Restore the previous handlers and close the wakeup pipe (idempotent)."""
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)  # type: ignore[arg-type]
        self._previous.clear()
        if self._wakeup_w >= 0:
            signal.set_wakeup_fd(self._previous_wakeup)
        self._close_pipe()

    def detach_in_worker(self) -> None:
        """Reset a freshly forked worker to default dispositions.

        The worker must never react to the server's flags or write to the
        server's wakeup pipe.  SIGINT is ignored so that a terminal Ctrl-C
        aimed at the server does not cut in-flight requests short.
        """
        signal.set_wakeup_fd(-1)
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        signal.signal(signal.SIGCHLD, signal.SIG_DFL)
        signal.signal(signal.SIGINT, signal.SIG_IGN)
        self._previous.clear()
        self._close_pipe()

    def _close_pipe(self) -> None:
        for fd in (self._wakeup_r, self._wakeup_w):
            if fd >= 0:
                os.close(fd)
        self._wakeup_r = self._wakeup_w = -1
