# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Fixed-size binary records exchanged over the conduits.

Record Layouts (native byte order, standard sizes, no padding)
---------------------------------------------------------------
::

    Request (16 bytes)
    Offset  Size  Field
    0       4     operation: 3-char code, NUL terminated
    4       4     operand1: int32
    8       4     operand2: int32
    12      4     client_id: int32 (client process id)

    Response (72 bytes)
    Offset  Size  Field
    0       4     result: int32 (meaningful when error_flag == 0)
    4       4     error_flag: int32 (0 = success, 1 = failure)
    8       64    error_message: up to 63 bytes + NUL (meaningful when error_flag == 1)

All parties share one host, so integers use the native representation and
no byte order is negotiated.  A block whose length is not exactly the record
size is a framing failure and is never partially decoded.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from typing import Final

from pipecalc.rpc._common import MalformedRequest, MalformedResponse
from pipecalc.rpc._debug import fmt_request, fmt_response, wire_request_logger, wire_response_logger

__all__ = [
    "ERROR_MESSAGE_MAX",
    "INT32_MAX",
    "INT32_MIN",
    "OPERATIONS",
    "REQUEST_SIZE",
    "RESPONSE_SIZE",
    "Request",
    "Response",
    "decode_request",
    "decode_response",
    "encode_request",
    "encode_response",
]

OPERATIONS: Final[tuple[str, ...]] = ("add", "sub", "mul", "div")

INT32_MIN: Final[int] = -(2**31)
INT32_MAX: Final[int] = 2**31 - 1

_OPERATION_FIELD = 4
_MESSAGE_FIELD = 64
ERROR_MESSAGE_MAX: Final[int] = _MESSAGE_FIELD - 1

_REQUEST_STRUCT = struct.Struct(f"={_OPERATION_FIELD}siii")
assert _REQUEST_STRUCT.size == 16

_RESPONSE_STRUCT = struct.Struct(f"=ii{_MESSAGE_FIELD}s")
assert _RESPONSE_STRUCT.size == 72

REQUEST_SIZE: Final[int] = _REQUEST_STRUCT.size
RESPONSE_SIZE: Final[int] = _RESPONSE_STRUCT.size


def _check_int32(name: str, value: int) -> None:
    if not INT32_MIN <= value <= INT32_MAX:
        raise ValueError(f"{name} out of int32 range: {value}")


def _cstring(raw: bytes) -> str:
    """Decode a NUL-terminated fixed field (the whole field if no NUL)."""
    return raw.split(b"\0", 1)[0].decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Request:
    """One arithmetic request.

    Attributes:
        operation: Operator code.  Any string of at most 3 bytes encodes;
            only codes in ``OPERATIONS`` are computed by the server.
        operand1: Left operand (int32).
        operand2: Right operand (int32).
        client_id: Originating client, used only for logging and correlation.

    """

    operation: str
    operand1: int
    operand2: int
    client_id: int


@dataclass(frozen=True)
class Response:
    """One arithmetic response.

    Exactly one of ``result`` (when ``error_flag`` is false) or
    ``error_message`` (when it is true) carries meaning.  Build instances
    through :meth:`success` and :meth:`failure` to keep that invariant.

    Attributes:
        result: Computed value.
        error_flag: ``True`` when the request failed semantically.
        error_message: Why the request failed.

    """

    result: int = 0
    error_flag: bool = False
    error_message: str = ""

    @classmethod
    def success(cls, result: int) -> Response:
        """Response carrying a computed result."""
        return cls(result=result)

    @classmethod
    def failure(cls, message: str) -> Response:
        """Response carrying an error message."""
        return cls(error_flag=True, error_message=message)


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


def encode_request(request: Request) -> bytes:
    """Encode *request* as a fixed-size block.

    Raises:
        ValueError: If the operation code is longer than 3 bytes or an
            integer field does not fit in int32.

    """
    op = request.operation.encode("utf-8")
    if len(op) >= _OPERATION_FIELD:
        raise ValueError(f"operation code too long: {request.operation!r}")
    _check_int32("operand1", request.operand1)
    _check_int32("operand2", request.operand2)
    _check_int32("client_id", request.client_id)
    if wire_request_logger.isEnabledFor(logging.DEBUG):
        wire_request_logger.debug("encode_request: %s", fmt_request(request))
    return _REQUEST_STRUCT.pack(op, request.operand1, request.operand2, request.client_id)


def decode_request(data: bytes) -> Request:
    """Decode a request block.

    The operation field is taken up to its first NUL; unknown codes decode
    successfully and are rejected later by the worker.

    Raises:
        MalformedRequest: If ``len(data)`` differs from ``REQUEST_SIZE``.

    """
    if len(data) != REQUEST_SIZE:
        raise MalformedRequest(REQUEST_SIZE, len(data))
    op, operand1, operand2, client_id = _REQUEST_STRUCT.unpack(data)
    request = Request(_cstring(op), operand1, operand2, client_id)
    if wire_request_logger.isEnabledFor(logging.DEBUG):
        wire_request_logger.debug("decode_request: %s", fmt_request(request))
    return request


def encode_response(response: Response) -> bytes:
    """Encode *response* as a fixed-size block.

    Error messages longer than 63 bytes are truncated so the field always
    keeps its NUL terminator.

    Raises:
        ValueError: If ``result`` does not fit in int32.

    """
    _check_int32("result", response.result)
    message = response.error_message.encode("utf-8")[:ERROR_MESSAGE_MAX]
    if wire_response_logger.isEnabledFor(logging.DEBUG):
        wire_response_logger.debug("encode_response: %s", fmt_response(response))
    return _RESPONSE_STRUCT.pack(response.result, 1 if response.error_flag else 0, message)


def decode_response(data: bytes) -> Response:
    """Decode a response block.

    Raises:
        MalformedResponse: If ``len(data)`` differs from ``RESPONSE_SIZE``.

    """
    if len(data) != RESPONSE_SIZE:
        raise MalformedResponse(RESPONSE_SIZE, len(data))
    result, error_flag, message = _RESPONSE_STRUCT.unpack(data)
    if error_flag:
        response = Response.failure(_cstring(message))
    else:
        response = Response.success(result)
    if wire_response_logger.isEnabledFor(logging.DEBUG):
        wire_response_logger.debug("decode_response: %s", fmt_response(response))
    return response
