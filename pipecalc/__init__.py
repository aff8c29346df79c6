# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Inter-process arithmetic service over named FIFOs, one forked worker per request."""

import logging

from pipecalc.rpc import (
    DIVISION_BY_ZERO,
    INTEGER_OVERFLOW,
    INVALID_OPERATION,
    OPERATIONS,
    ArithmeticClient,
    ArithmeticServer,
    ConduitPaths,
    FramingError,
    MalformedRequest,
    MalformedResponse,
    PipecalcError,
    Request,
    Response,
    ServerConfig,
    ServerUnavailable,
    StartupError,
    TransactionLog,
    TransportUnavailable,
    WriteFailed,
    evaluate,
    is_valid_operation,
    run_server,
)

__all__ = [
    "DIVISION_BY_ZERO",
    "INTEGER_OVERFLOW",
    "INVALID_OPERATION",
    "OPERATIONS",
    "ArithmeticClient",
    "ArithmeticServer",
    "ConduitPaths",
    "FramingError",
    "MalformedRequest",
    "MalformedResponse",
    "PipecalcError",
    "Request",
    "Response",
    "ServerConfig",
    "ServerUnavailable",
    "StartupError",
    "TransactionLog",
    "TransportUnavailable",
    "WriteFailed",
    "evaluate",
    "is_valid_operation",
    "run_server",
]

# Attach NullHandler to the root logger so library users don't get
# "No handler found" warnings.  Must come after all imports so the
# logger hierarchy is fully populated.
logging.getLogger("pipecalc").addHandler(logging.NullHandler())
