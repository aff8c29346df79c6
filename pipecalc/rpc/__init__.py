# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Request/response protocol over a pair of named FIFOs.

A long-lived server reads fixed-size request records from one well-known
FIFO, forks a worker per request, and the worker writes one fixed-size
response record to a second well-known FIFO.

Wire Protocol
-------------
::

    Client→Server (request conduit):  [16-byte request record]
    Server→Client (response conduit): [72-byte response record]

One record per open: a client opens the request conduit, writes one record,
closes it, then opens the response conduit and reads one record.  Semantic
failures (unknown operator, division by zero) travel inside a normal
response with ``error_flag`` set.  Transport and framing failures raise on
the side that observes them and are never retried.

Single In-Flight Discipline
---------------------------
There is one response conduit for all clients and responses carry no
client address.  Clients therefore serialise their round trips with an
exclusive ``flock`` on ``<response conduit>.lock``.  A client that skips
the lock can still receive another client's response.
"""

from pipecalc.rpc._arith import (
    DIVISION_BY_ZERO,
    INTEGER_OVERFLOW,
    INVALID_OPERATION,
    evaluate,
    is_valid_operation,
)
from pipecalc.rpc._client import ArithmeticClient
from pipecalc.rpc._common import (
    DEFAULT_LOG_FILE,
    DEFAULT_REQUEST_FIFO,
    DEFAULT_RESPONSE_FIFO,
    ConduitPaths,
    FramingError,
    MalformedRequest,
    MalformedResponse,
    PipecalcError,
    ServerConfig,
    ServerUnavailable,
    StartupError,
    TransportUnavailable,
    WriteFailed,
)
from pipecalc.rpc._journal import TransactionLog, format_transaction
from pipecalc.rpc._lifecycle import SignalController, reap_workers
from pipecalc.rpc._server import ArithmeticServer, DispatchState, ServerContext, run_server
from pipecalc.rpc._transport import (
    RequestListener,
    create_conduits,
    exclusive_round_trip,
    is_fifo,
    open_request_writer,
    open_response_reader,
    read_record,
    remove_conduits,
    reopen_response_reader,
    send_response,
    write_record,
)
from pipecalc.rpc._wire import (
    ERROR_MESSAGE_MAX,
    INT32_MAX,
    INT32_MIN,
    OPERATIONS,
    REQUEST_SIZE,
    RESPONSE_SIZE,
    Request,
    Response,
    decode_request,
    decode_response,
    encode_request,
    encode_response,
)

__all__ = [
    "DEFAULT_LOG_FILE",
    "DEFAULT_REQUEST_FIFO",
    "DEFAULT_RESPONSE_FIFO",
    "DIVISION_BY_ZERO",
    "ERROR_MESSAGE_MAX",
    "INT32_MAX",
    "INT32_MIN",
    "INTEGER_OVERFLOW",
    "INVALID_OPERATION",
    "OPERATIONS",
    "REQUEST_SIZE",
    "RESPONSE_SIZE",
    "ArithmeticClient",
    "ArithmeticServer",
    "ConduitPaths",
    "DispatchState",
    "FramingError",
    "MalformedRequest",
    "MalformedResponse",
    "PipecalcError",
    "Request",
    "RequestListener",
    "Response",
    "ServerConfig",
    "ServerContext",
    "ServerUnavailable",
    "SignalController",
    "StartupError",
    "TransactionLog",
    "TransportUnavailable",
    "WriteFailed",
    "create_conduits",
    "decode_request",
    "decode_response",
    "encode_request",
    "encode_response",
    "evaluate",
    "exclusive_round_trip",
    "format_transaction",
    "is_fifo",
    "is_valid_operation",
    "open_request_writer",
    "open_response_reader",
    "read_record",
    "reap_workers",
    "remove_conduits",
    "reopen_response_reader",
    "run_server",
    "send_response",
    "write_record",
]
