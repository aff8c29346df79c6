# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Named half-duplex conduits (FIFOs) and the operations on them.

Two FIFOs are shared by every client: the request conduit (client→server)
and the response conduit (server→client).  The server creates both at
startup and removes them at shutdown.  A third file, the lock file next to
the response conduit, lets cooperating clients take turns so that at most
one round trip is in flight at a time.

Server side
-----------
:class:`RequestListener` keeps a non-blocking read end open on the request
conduit.  ``poll()`` waits until the conduit is readable or an extra
descriptor (the signal wakeup pipe) fires, reads everything the writer of
that round sent, then rotates the read end: the replacement is opened
*before* the old end is closed, so writers never observe a moment with no
reader, and the new end starts with a clean EOF state.

Client side
-----------
Opening the request conduit for write uses ``O_NONBLOCK`` so that a missing
reader fails immediately with :class:`ServerUnavailable` instead of
blocking.  The response conduit is opened and read with blocking calls; there
is no timeout.  A reader that meets an empty end of file is replaced while
still open, so a response is never dropped with the last reader.
"""

from __future__ import annotations

import contextlib
import errno
import fcntl
import logging
import os
import select
import stat
from collections.abc import Iterator
from pathlib import Path

from pipecalc.rpc._common import (
    CONDUIT_MODE,
    ConduitPaths,
    ServerUnavailable,
    StartupError,
    TransportUnavailable,
    WriteFailed,
)
from pipecalc.rpc._debug import fmt_block, wire_transport_logger

__all__ = [
    "RequestListener",
    "create_conduits",
    "exclusive_round_trip",
    "open_request_writer",
    "open_response_reader",
    "read_record",
    "remove_conduits",
    "reopen_response_reader",
    "send_response",
    "write_record",
]

_NO_READER_ERRNOS = frozenset({errno.ENXIO, errno.ENOENT})

_ROUND_READ = select.PIPE_BUF
"""Largest write the kernel keeps contiguous; one read takes a whole round."""


# ---------------------------------------------------------------------------
# Creation / teardown (server)
# ---------------------------------------------------------------------------


def _unlink(path: Path) -> None:
    with contextlib.suppress(FileNotFoundError):
        path.unlink()


def remove_conduits(paths: ConduitPaths) -> None:
    """Remove both conduits and the lock file; missing files are ignored."""
    for path in (paths.request, paths.response, paths.lock):
        _unlink(path)
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug("remove_conduits: request=%s, response=%s", paths.request, paths.response)


def create_conduits(paths: ConduitPaths) -> None:
    """Create both conduits and the lock file, replacing stale leftovers.

    Modes are forced to ``0o666`` after creation so the umask of the server
    does not lock other users out.

    Raises:
        StartupError: If anything cannot be created.  Whatever was created
            before the failure has been removed again.

    """
    remove_conduits(paths)
    try:
        for path in (paths.request, paths.response):
            os.mkfifo(path, CONDUIT_MODE)
            os.chmod(path, CONDUIT_MODE)
        fd = os.open(paths.lock, os.O_WRONLY | os.O_CREAT | os.O_EXCL, CONDUIT_MODE)
        os.close(fd)
        os.chmod(paths.lock, CONDUIT_MODE)
    except OSError as exc:
        remove_conduits(paths)
        raise StartupError(f"cannot create conduit {exc.filename}: {exc.strerror}") from exc
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug("create_conduits: request=%s, response=%s", paths.request, paths.response)


def is_fifo(path: Path) -> bool:
    """Return whether *path* exists and is a FIFO."""
    try:
        return stat.S_ISFIFO(path.stat().st_mode)
    except FileNotFoundError:
        return False


# ---------------------------------------------------------------------------
# RequestListener (server)
# ---------------------------------------------------------------------------


class RequestListener:
    """Non-blocking reader of the request conduit, one writer's bytes per round."""

    __slots__ = ("_fd", "_path")

    def __init__(self, path: Path) -> None:
        """Open the read end of the request conduit at *path*."""
        self._path = path
        self._fd = self._open()

    def _open(self) -> int:
        fd = os.open(self._path, os.O_RDONLY | os.O_NONBLOCK)
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("RequestListener open: path=%s, fd=%d", self._path, fd)
        return fd

    def fileno(self) -> int:
        """Descriptor of the current read end."""
        return self._fd

    def poll(self, wakeup_fd: int | None = None) -> bytes | None:
        """Wait for the next round on the request conduit.

        A round is everything one writer put into the conduit: up to
        ``PIPE_BUF`` bytes in one read, plus whatever is still buffered when
        a single write was larger than that.  The caller sees the true length,
        so an oversized write is rejected whole by the codec instead of being
        cut down to one record.

        Args:
            wakeup_fd: Extra descriptor that ends the wait when readable
                (the signal wakeup pipe).  It is not read here.

        Returns:
            ``None`` when the wait ended without request data (wakeup or a
            spurious readiness), ``b""`` when a writer closed without
            sending anything, otherwise every byte of the round.

        """
        watched = [self._fd] if wakeup_fd is None else [self._fd, wakeup_fd]
        readable, _, _ = select.select(watched, [], [])
        if self._fd not in readable:
            return None
        try:
            data = os.read(self._fd, _ROUND_READ)
        except BlockingIOError:
            return None
        if len(data) == _ROUND_READ:
            data += self._drain()
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("RequestListener read: %s", fmt_block(data))
        self._rotate()
        return data

    def _drain(self) -> bytes:
        chunks: list[bytes] = []
        while True:
            try:
                chunk = os.read(self._fd, _ROUND_READ)
            except BlockingIOError:
                break
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)

    def _rotate(self) -> None:
        replacement = self._open()
        os.close(self._fd)
        self._fd = replacement

    def close(self) -> None:
        """Close the read end (idempotent)."""
        if self._fd < 0:
            return
        os.close(self._fd)
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug("RequestListener closed: path=%s, fd=%d", self._path, self._fd)
        self._fd = -1


# ---------------------------------------------------------------------------
# Worker side
# ---------------------------------------------------------------------------


def send_response(path: Path, block: bytes) -> None:
    """Write one response record to the response conduit.

    Blocks until a client opens the conduit for reading.

    Raises:
        OSError: If the conduit cannot be opened.
        WriteFailed: If the record was not written whole.

    """
    fd = os.open(path, os.O_WRONLY)
    try:
        write_record(fd, block)
    finally:
        os.close(fd)


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------


def open_request_writer(path: Path) -> int:
    """Open the request conduit for writing without waiting for a reader.

    Returns:
        A blocking write descriptor.

    Raises:
        ServerUnavailable: If the conduit is missing or nobody reads it.
        TransportUnavailable: On any other open failure.

    """
    try:
        fd = os.open(path, os.O_WRONLY | os.O_NONBLOCK)
    except OSError as exc:
        if exc.errno in _NO_READER_ERRNOS:
            raise ServerUnavailable(f"no server is reading {path}") from exc
        raise TransportUnavailable(f"cannot open {path}: {exc.strerror}") from exc
    os.set_blocking(fd, True)
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug("open_request_writer: path=%s, fd=%d", path, fd)
    return fd


def open_response_reader(path: Path) -> int:
    """Open the response conduit for reading; blocks until a worker opens it for writing.

    Raises:
        TransportUnavailable: If the conduit cannot be opened.

    """
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError as exc:
        raise TransportUnavailable(f"cannot open {path}: {exc.strerror}") from exc
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug("open_response_reader: path=%s, fd=%d", path, fd)
    return fd


def reopen_response_reader(path: Path, stale_fd: int) -> int:
    """Replace a response read end that reached end of file with no data.

    The replacement is opened before *stale_fd* is closed, so the conduit
    always has a reader and a record written in between stays buffered.
    Returns once the new end is readable: data has arrived, or a writer came
    and went.  The returned descriptor is blocking.

    Raises:
        TransportUnavailable: If the conduit cannot be opened.  *stale_fd*
            is left open in that case.

    """
    try:
        fd = os.open(path, os.O_RDONLY | os.O_NONBLOCK)
    except OSError as exc:
        raise TransportUnavailable(f"cannot open {path}: {exc.strerror}") from exc
    os.close(stale_fd)
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug("reopen_response_reader: path=%s, fd=%d -> %d", path, stale_fd, fd)
    select.select([fd], [], [])
    os.set_blocking(fd, True)
    return fd


def write_record(fd: int, block: bytes) -> None:
    """Write *block* with a single ``write`` call.

    Records are smaller than ``PIPE_BUF`` so the write is atomic; anything
    less than the whole block is a failure.

    Raises:
        WriteFailed: On a short or failed write.

    """
    try:
        written = os.write(fd, block)
    except OSError as exc:
        raise WriteFailed(f"write failed: {exc.strerror}") from exc
    if written != len(block):
        raise WriteFailed(f"short write: {written} of {len(block)} bytes")
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug("write_record: fd=%d, %s", fd, fmt_block(block))


def read_record(fd: int, size: int) -> bytes:
    """Read up to *size* bytes, stopping early only at end of file.

    The caller decides whether a short result is a framing failure.

    Raises:
        TransportUnavailable: If the read itself fails.

    """
    chunks: list[bytes] = []
    remaining = size
    while remaining > 0:
        try:
            chunk = os.read(fd, remaining)
        except OSError as exc:
            raise TransportUnavailable(f"read failed: {exc.strerror}") from exc
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    data = b"".join(chunks)
    if wire_transport_logger.isEnabledFor(logging.DEBUG):
        wire_transport_logger.debug("read_record: fd=%d, %s", fd, fmt_block(data))
    return data


@contextlib.contextmanager
def exclusive_round_trip(paths: ConduitPaths) -> Iterator[None]:
    """Hold the client lock for one write-then-read round trip.

    Raises:
        ServerUnavailable: If the lock file is missing (no server has
            created the conduits).

    """
    try:
        fd = os.open(paths.lock, os.O_RDONLY)
    except FileNotFoundError as exc:
        raise ServerUnavailable(f"no server has created {paths.lock}") from exc
    except OSError as exc:
        raise TransportUnavailable(f"cannot open {paths.lock}: {exc.strerror}") from exc
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        yield
    finally:
        os.close(fd)
