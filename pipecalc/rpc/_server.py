# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Server dispatch: one forked worker per request."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from pipecalc.rpc._arith import evaluate
from pipecalc.rpc._common import (
    MalformedRequest,
    PipecalcError,
    ServerConfig,
    StartupError,
    _logger,
    _worker_logger,
)
from pipecalc.rpc._debug import fmt_request, fmt_response
from pipecalc.rpc._journal import TransactionLog
from pipecalc.rpc._lifecycle import SignalController, reap_workers
from pipecalc.rpc._transport import RequestListener, create_conduits, remove_conduits, send_response
from pipecalc.rpc._wire import Request, decode_request, encode_response

__all__ = ["ArithmeticServer", "DispatchState", "ServerContext", "run_server"]


class DispatchState(Enum):
    """Where the dispatch loop currently is."""

    IDLE = "idle"
    AWAITING_REQUEST = "awaiting_request"
    DISPATCHED = "dispatched"
    SHUTTING_DOWN = "shutting_down"


@dataclass
class ServerContext:
    """Everything the dispatch loop owns, in one place.

    Attributes:
        config: Resolved paths.
        journal: Transaction log shared with workers.
        signals: Signal dispositions, flags, and the wakeup pipe.
        listener: Read end of the request conduit while serving.
        state: Current dispatch state.
        workers: Pids of forked workers not yet reaped.
        dispatched: Number of workers forked so far.

    """

    config: ServerConfig
    journal: TransactionLog
    signals: SignalController = field(default_factory=SignalController)
    listener: RequestListener | None = None
    state: DispatchState = DispatchState.IDLE
    workers: set[int] = field(default_factory=set)
    dispatched: int = 0


class ArithmeticServer:
    """Long-lived arithmetic server over the request/response conduits.

    The dispatcher is single-threaded: it reads one request per round, forks
    a worker that computes, logs, and replies, and goes straight back to
    waiting.  A worker that blocks on a slow client never holds up the
    dispatcher.

    ``serve()`` must run in the main thread because it installs signal
    handlers.
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize with *config* (defaults to the well-known paths)."""
        config = config or ServerConfig()
        self._ctx = ServerContext(config=config, journal=TransactionLog(config.log_path))

    @property
    def context(self) -> ServerContext:
        """The server's explicit state."""
        return self._ctx

    def request_shutdown(self) -> None:
        """Ask the dispatch loop to stop after the current round."""
        self._ctx.signals.request_shutdown()

    def serve(self, on_ready: Callable[[], None] | None = None) -> None:
        """Start, dispatch until a termination signal, then tear down.

        Args:
            on_ready: Called once the conduits exist and handlers are
                installed, before the first request is awaited.

        Raises:
            StartupError: If the log is not writable or the conduits cannot
                be created.  Nothing is left on disk in that case.

        """
        self._start()
        try:
            if on_ready is not None:
                on_ready()
            self._dispatch_loop()
        finally:
            self._shutdown()

    # -- lifecycle ----------------------------------------------------------

    def _start(self) -> None:
        ctx = self._ctx
        paths = ctx.config.paths
        pid = os.getpid()
        try:
            ctx.journal.start(pid)
        except OSError as exc:
            raise StartupError(f"cannot write log file {ctx.journal.path}: {exc.strerror}") from exc
        create_conduits(paths)
        try:
            ctx.listener = RequestListener(paths.request)
            ctx.signals.install()
        except (OSError, ValueError) as exc:
            if ctx.listener is not None:
                ctx.listener.close()
                ctx.listener = None
            remove_conduits(paths)
            raise StartupError(f"cannot listen on {paths.request}: {exc}") from exc
        _logger.info(
            "Server started (PID %d), requests on %s, responses on %s",
            pid,
            paths.request,
            paths.response,
            extra={"server_pid": pid},
        )

    def _shutdown(self) -> None:
        ctx = self._ctx
        ctx.state = DispatchState.SHUTTING_DOWN
        _logger.info("Shutting down")
        self._reap()
        if ctx.listener is not None:
            ctx.listener.close()
            ctx.listener = None
        remove_conduits(ctx.config.paths)
        try:
            ctx.journal.stop(os.getpid())
        except OSError as exc:
            _logger.error("Cannot write shutdown banner to %s: %s", ctx.journal.path, exc.strerror)
        ctx.signals.uninstall()
        if ctx.workers:
            _logger.info("Shutdown complete, %d worker(s) still running", len(ctx.workers))
        else:
            _logger.info("Shutdown complete")

    def _reap(self) -> None:
        for pid, code in reap_workers():
            self._ctx.workers.discard(pid)
            if code != 0:
                _logger.warning("Worker %d exited with status %d", pid, code, extra={"worker_pid": pid})
            elif _logger.isEnabledFor(logging.DEBUG):
                _logger.debug("Reaped worker %d", pid)

    # -- dispatch -----------------------------------------------------------

    def _dispatch_loop(self) -> None:
        ctx = self._ctx
        assert ctx.listener is not None
        while not ctx.signals.shutdown_requested:
            if ctx.signals.take_reap_pending():
                self._reap()
            ctx.state = DispatchState.AWAITING_REQUEST
            block = ctx.listener.poll(ctx.signals.wakeup_fd)
            ctx.signals.drain_wakeup()
            if block is None:
                continue
            if not block:
                _logger.debug("Client disconnected without a request")
                continue
            try:
                request = decode_request(block)
            except MalformedRequest as exc:
                _logger.warning("Dropping malformed request: %s", exc)
                continue
            self._dispatch(request)
            ctx.state = DispatchState.IDLE

    def _dispatch(self, request: Request) -> None:
        ctx = self._ctx
        ctx.state = DispatchState.DISPATCHED
        _logger.info(
            "Received request from client %d: %s",
            request.client_id,
            fmt_request(request),
            extra={"client_id": request.client_id},
        )
        try:
            pid = os.fork()
        except OSError as exc:
            _logger.error("Cannot spawn worker, dropping request from client %d: %s", request.client_id, exc)
            return
        if pid == 0:
            code = 1
            try:
                code = self._run_worker(request)
            except BaseException:
                _worker_logger.exception("Worker failed for client %d", request.client_id)
            finally:
                os._exit(code)
        ctx.workers.add(pid)
        ctx.dispatched += 1
        _logger.info("Forked worker %d for client %d", pid, request.client_id, extra={"worker_pid": pid})

    def _run_worker(self, request: Request) -> int:
        """Body of a forked worker; returns its exit status."""
        ctx = self._ctx
        ctx.signals.detach_in_worker()
        if ctx.listener is not None:
            ctx.listener.close()
        pid = os.getpid()
        response = evaluate(request)
        ctx.journal.record(request, response, pid)
        try:
            send_response(ctx.config.paths.response, encode_response(response))
        except (OSError, PipecalcError) as exc:
            _worker_logger.error(
                "Worker %d cannot deliver response to client %d: %s",
                pid,
                request.client_id,
                exc,
                extra={"worker_pid": pid, "client_id": request.client_id},
            )
            return 1
        _worker_logger.info(
            "Worker %d sent %s to client %d",
            pid,
            fmt_response(response),
            request.client_id,
            extra={"worker_pid": pid, "client_id": request.client_id},
        )
        return 0


def run_server(config: ServerConfig | None = None, *, on_ready: Callable[[], None] | None = None) -> None:
    """Build an :class:`ArithmeticServer` and serve until terminated."""
    ArithmeticServer(config).serve(on_ready=on_ready)

