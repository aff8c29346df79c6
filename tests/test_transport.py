# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for conduit creation, the request listener, and record I/O."""

from __future__ import annotations

import fcntl
import os
import select
import stat
import threading
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from pipecalc.rpc import (
    REQUEST_SIZE,
    ArithmeticClient,
    ConduitPaths,
    MalformedResponse,
    Request,
    RequestListener,
    Response,
    ServerUnavailable,
    StartupError,
    WriteFailed,
    create_conduits,
    encode_request,
    encode_response,
    exclusive_round_trip,
    is_fifo,
    open_request_writer,
    read_record,
    remove_conduits,
    reopen_response_reader,
    send_response,
    write_record,
)


@pytest.fixture()
def paths(tmp_path: Path) -> Iterator[ConduitPaths]:
    """Freshly created conduits, removed afterwards."""
    conduits = ConduitPaths(request=tmp_path / "req", response=tmp_path / "resp")
    create_conduits(conduits)
    try:
        yield conduits
    finally:
        remove_conduits(conduits)


@pytest.fixture()
def listener(paths: ConduitPaths) -> Iterator[RequestListener]:
    """A listener on the request conduit."""
    reader = RequestListener(paths.request)
    try:
        yield reader
    finally:
        reader.close()


def _send(path: Path, data: bytes) -> None:
    fd = open_request_writer(path)
    try:
        if data:
            os.write(fd, data)
    finally:
        os.close(fd)


# ---------------------------------------------------------------------------
# Creation / removal
# ---------------------------------------------------------------------------


class TestConduits:
    """create_conduits / remove_conduits."""

    def test_creates_fifos_and_lock(self, paths: ConduitPaths) -> None:
        """Both conduits are FIFOs with mode 0o666; the lock is a regular file."""
        for path in (paths.request, paths.response):
            assert is_fifo(path)
            assert stat.S_IMODE(path.stat().st_mode) == 0o666
        assert paths.lock.is_file()

    def test_lock_path(self, tmp_path: Path) -> None:
        """The lock file sits next to the response conduit."""
        paths = ConduitPaths(request=tmp_path / "a", response=tmp_path / "b")
        assert paths.lock == tmp_path / "b.lock"

    def test_replaces_stale_files(self, tmp_path: Path) -> None:
        """Leftover regular files are replaced with FIFOs."""
        paths = ConduitPaths(request=tmp_path / "req", response=tmp_path / "resp")
        paths.request.write_text("stale")
        paths.response.write_text("stale")
        paths.lock.write_text("stale")
        create_conduits(paths)
        try:
            assert is_fifo(paths.request)
            assert is_fifo(paths.response)
        finally:
            remove_conduits(paths)

    def test_failure_cleans_up(self, tmp_path: Path) -> None:
        """If the response conduit cannot be created, the request conduit is removed again."""
        paths = ConduitPaths(request=tmp_path / "req", response=tmp_path / "missing" / "resp")
        with pytest.raises(StartupError):
            create_conduits(paths)
        assert not paths.request.exists()

    def test_remove_is_idempotent(self, paths: ConduitPaths) -> None:
        """Removing twice is harmless."""
        remove_conduits(paths)
        remove_conduits(paths)
        assert not paths.request.exists()
        assert not paths.response.exists()
        assert not paths.lock.exists()

    def test_is_fifo_on_regular_file(self, tmp_path: Path) -> None:
        """Regular and missing files are not FIFOs."""
        regular = tmp_path / "plain"
        regular.write_text("")
        assert not is_fifo(regular)
        assert not is_fifo(tmp_path / "nothing")


# ---------------------------------------------------------------------------
# Request listener
# ---------------------------------------------------------------------------


class TestRequestListener:
    """Non-blocking reads with rotation."""

    def test_reads_one_record(self, paths: ConduitPaths, listener: RequestListener) -> None:
        """A whole record comes back as one block."""
        block = encode_request(Request("add", 2, 3, 1))
        _send(paths.request, block)
        assert listener.poll() == block

    def test_consecutive_rounds(self, paths: ConduitPaths, listener: RequestListener) -> None:
        """Each round yields the next record."""
        first = encode_request(Request("add", 1, 1, 1))
        second = encode_request(Request("sub", 1, 1, 2))
        _send(paths.request, first)
        assert listener.poll() == first
        _send(paths.request, second)
        assert listener.poll() == second

    def test_short_write(self, paths: ConduitPaths, listener: RequestListener) -> None:
        """Fewer bytes than a record are returned as-is."""
        _send(paths.request, b"short")
        assert listener.poll() == b"short"

    def test_oversized_write_returned_whole(self, paths: ConduitPaths, listener: RequestListener) -> None:
        """A write longer than a record comes back whole so the codec can reject it."""
        _send(paths.request, b"x" * (REQUEST_SIZE + 4))
        assert listener.poll() == b"x" * (REQUEST_SIZE + 4)

    def test_write_beyond_pipe_buf_drained(self, paths: ConduitPaths, listener: RequestListener) -> None:
        """Bytes past one ``PIPE_BUF`` read belong to the same round, not the next."""
        _send(paths.request, b"y" * (3 * select.PIPE_BUF))
        assert listener.poll() == b"y" * (3 * select.PIPE_BUF)
        block = encode_request(Request("div", 8, 2, 1))
        _send(paths.request, block)
        assert listener.poll() == block

    def test_empty_round(self, paths: ConduitPaths, listener: RequestListener) -> None:
        """A writer that closes without sending produces an empty round, then the listener recovers."""
        _send(paths.request, b"")
        assert listener.poll() == b""
        block = encode_request(Request("mul", 2, 2, 1))
        _send(paths.request, block)
        assert listener.poll() == block

    def test_wakeup(self, listener: RequestListener) -> None:
        """A readable wakeup descriptor ends the wait without data."""
        r, w = os.pipe()
        try:
            os.write(w, b"\0")
            assert listener.poll(r) is None
        finally:
            os.close(r)
            os.close(w)

    def test_close_idempotent(self, paths: ConduitPaths) -> None:
        """Closing twice is harmless and drops the reader."""
        reader = RequestListener(paths.request)
        reader.close()
        reader.close()
        assert reader.fileno() == -1
        with pytest.raises(ServerUnavailable):
            open_request_writer(paths.request)


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------


class TestClientIO:
    """Writer open, record I/O, and the round-trip lock."""

    def test_no_reader(self, paths: ConduitPaths) -> None:
        """Opening the request conduit with nobody reading fails fast."""
        with pytest.raises(ServerUnavailable):
            open_request_writer(paths.request)

    def test_missing_conduit(self, tmp_path: Path) -> None:
        """A missing conduit means no server."""
        with pytest.raises(ServerUnavailable):
            open_request_writer(tmp_path / "absent")

    def test_read_record_whole(self) -> None:
        """Reads gather a record written in pieces."""
        r, w = os.pipe()
        try:
            os.write(w, b"abc")
            os.write(w, b"def")
            os.close(w)
            w = -1
            assert read_record(r, 6) == b"abcdef"
        finally:
            os.close(r)
            if w >= 0:
                os.close(w)

    def test_read_record_short(self) -> None:
        """End of file stops the read early."""
        r, w = os.pipe()
        os.write(w, b"abc")
        os.close(w)
        try:
            assert read_record(r, 72) == b"abc"
        finally:
            os.close(r)

    def test_write_record_failure(self) -> None:
        """Writing to a pipe without readers fails."""
        r, w = os.pipe()
        os.close(r)
        try:
            with pytest.raises(WriteFailed):
                write_record(w, b"x" * 16)
        finally:
            os.close(w)

    def test_lock_missing(self, tmp_path: Path) -> None:
        """Without the lock file there is no server to talk to."""
        paths = ConduitPaths(request=tmp_path / "req", response=tmp_path / "resp")
        with pytest.raises(ServerUnavailable), exclusive_round_trip(paths):
            pass

    def test_lock_held(self, paths: ConduitPaths) -> None:
        """The round-trip lock is exclusive while held."""
        with exclusive_round_trip(paths):
            fd = os.open(paths.lock, os.O_RDONLY)
            try:
                with pytest.raises(BlockingIOError):
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            finally:
                os.close(fd)

    def test_reopen_keeps_buffered_record(self, paths: ConduitPaths) -> None:
        """A record written after an empty end of file survives the reader swap."""
        stale = os.open(paths.response, os.O_RDONLY | os.O_NONBLOCK)
        early = os.open(paths.response, os.O_WRONLY | os.O_NONBLOCK)
        os.close(early)
        assert read_record(stale, 8) == b""
        block = encode_response(Response.success(5))
        send_response(paths.response, block)
        fd = reopen_response_reader(paths.response, stale)
        try:
            assert read_record(fd, len(block) + 1) == block
        finally:
            os.close(fd)


# ---------------------------------------------------------------------------
# Client round trip against a stand-in server
# ---------------------------------------------------------------------------


def _answer_once(listener: RequestListener, reply: Callable[[Path], None], path: Path) -> threading.Thread:
    """Take one request off *listener* in a thread, then run *reply* on the response conduit."""

    def run() -> None:
        while not listener.poll():
            pass
        reply(path)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread


class TestClientRoundTrip:
    """ArithmeticClient framing and the response hand-over."""

    def test_oversized_response(self, paths: ConduitPaths, listener: RequestListener) -> None:
        """A reply longer than one record is a framing failure, not a truncated success."""

        def reply(path: Path) -> None:
            fd = os.open(path, os.O_WRONLY)
            try:
                os.write(fd, encode_response(Response.success(5)) + b"\0" * 8)
            finally:
                os.close(fd)

        thread = _answer_once(listener, reply, paths.response)
        with pytest.raises(MalformedResponse):
            ArithmeticClient(paths, client_id=1).call("add", 2, 3)
        thread.join(timeout=5)

    def test_stale_writer_hand_over(self, paths: ConduitPaths, listener: RequestListener) -> None:
        """A previous writer closing without data is skipped and the real reply still arrives."""

        def reply(path: Path) -> None:
            stale = os.open(path, os.O_WRONLY)
            os.close(stale)
            send_response(path, encode_response(Response.success(5)))

        thread = _answer_once(listener, reply, paths.response)
        assert ArithmeticClient(paths, client_id=1).call("add", 2, 3) == Response.success(5)
        thread.join(timeout=5)
        assert not thread.is_alive()
