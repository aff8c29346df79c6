# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Client side of the request/response round trip."""

from __future__ import annotations

import logging
import os

from pipecalc.rpc._common import ConduitPaths, _client_logger
from pipecalc.rpc._debug import fmt_request, fmt_response
from pipecalc.rpc._transport import (
    exclusive_round_trip,
    open_request_writer,
    open_response_reader,
    read_record,
    reopen_response_reader,
    write_record,
)
from pipecalc.rpc._wire import RESPONSE_SIZE, Request, Response, decode_response, encode_request

__all__ = ["ArithmeticClient"]


class ArithmeticClient:
    """Submits requests to a running server, one round trip at a time.

    Each :meth:`call` writes one request record, then opens the response
    conduit and blocks until exactly one response record arrives.  There is
    no retry and no timeout: if the server accepts a request but never
    replies, ``call`` blocks indefinitely.

    The round trip runs under an exclusive lock shared by all clients of
    the same server, because the response conduit is shared and carries no
    client address.

    Args:
        paths: Conduit locations (defaults to the well-known paths).
        client_id: Identifier sent with every request (defaults to the
            process id).

    """

    __slots__ = ("_client_id", "_paths")

    def __init__(self, paths: ConduitPaths | None = None, client_id: int | None = None) -> None:
        """Initialize for the server at *paths*."""
        self._paths = paths or ConduitPaths()
        self._client_id = os.getpid() if client_id is None else client_id

    @property
    def client_id(self) -> int:
        """Identifier sent with every request."""
        return self._client_id

    @property
    def paths(self) -> ConduitPaths:
        """Conduit locations."""
        return self._paths

    def _receive(self) -> bytes:
        # One byte past a record so an oversized response shows its real length.
        fd = open_response_reader(self._paths.response)
        try:
            data = read_record(fd, RESPONSE_SIZE + 1)
            while not data:
                # The previous round's worker can still hold its write end when
                # we open; its close then reads as an empty end of file.
                _client_logger.debug("Empty response round, reopening %s", self._paths.response)
                fd = reopen_response_reader(self._paths.response, fd)
                data = read_record(fd, RESPONSE_SIZE + 1)
            return data
        finally:
            os.close(fd)

    def call(self, operation: str, operand1: int, operand2: int) -> Response:
        """Run one round trip.

        Returns:
            The server's response.  Semantic failures (unknown operator,
            division by zero) come back as ``Response.error_flag``, not as
            exceptions.

        Raises:
            ValueError: If the request cannot be encoded.
            ServerUnavailable: If no server is listening.
            WriteFailed: If the request could not be written whole.
            TransportUnavailable: If the response conduit cannot be opened
                or read.
            MalformedResponse: If the response has the wrong size.

        """
        request = Request(operation, operand1, operand2, self._client_id)
        block = encode_request(request)
        with exclusive_round_trip(self._paths):
            fd = open_request_writer(self._paths.request)
            try:
                write_record(fd, block)
            finally:
                os.close(fd)
            if _client_logger.isEnabledFor(logging.DEBUG):
                _client_logger.debug("Sent %s", fmt_request(request))
            data = self._receive()
        response = decode_response(data)
        if _client_logger.isEnabledFor(logging.DEBUG):
            _client_logger.debug("Received %s", fmt_response(response))
        return response
