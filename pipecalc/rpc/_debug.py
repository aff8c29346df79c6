# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Debug logging infrastructure for wire protocol diagnostics.

Provides logger instances under the ``pipecalc.wire.*`` hierarchy and
formatting helpers for protocol records.  Enabling
``logging.getLogger("pipecalc.wire").setLevel(logging.DEBUG)`` shows every
record that crosses a conduit, plus conduit open/close/rotate events.

All formatting helpers return ``str`` and never log directly.
They are designed to be called inside ``isEnabledFor`` guards so
there is zero overhead when debug logging is disabled.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pipecalc.rpc._wire import Request, Response

# ---------------------------------------------------------------------------
# Logger hierarchy: pipecalc.wire.*
# ---------------------------------------------------------------------------

wire_request_logger = logging.getLogger("pipecalc.wire.request")
"""Request encoding / decoding."""

wire_response_logger = logging.getLogger("pipecalc.wire.response")
"""Response encoding / decoding."""

wire_transport_logger = logging.getLogger("pipecalc.wire.transport")
"""Conduit lifecycle (create, open, rotate, remove)."""

# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

_MAX_BYTES_SHOWN = 24
"""Maximum number of raw bytes rendered by fmt_block."""


def fmt_request(request: Request) -> str:
    """Format a request record.

    Returns:
        ``"add(2, 3) from client 4242"``

    """
    return f"{request.operation}({request.operand1}, {request.operand2}) from client {request.client_id}"


def fmt_response(response: Response) -> str:
    """Format a response record.

    Returns:
        ``"result=5"`` or ``"error='Division by zero'"``

    """
    if response.error_flag:
        return f"error={response.error_message!r}"
    return f"result={response.result}"


def fmt_block(data: bytes) -> str:
    """Format a raw record block as length plus a hex prefix.

    Returns:
        ``"16 bytes: 61646400 02000000 ..."``

    """
    shown = data[:_MAX_BYTES_SHOWN].hex(" ", -4)
    suffix = " ..." if len(data) > _MAX_BYTES_SHOWN else ""
    return f"{len(data)} bytes: {shown}{suffix}"
