# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Constants, configuration, errors, and loggers for the FIFO protocol."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_REQUEST_FIFO: Final[Path] = Path("/tmp/fifo_request")
DEFAULT_RESPONSE_FIFO: Final[Path] = Path("/tmp/fifo_response")
DEFAULT_LOG_FILE: Final[Path] = Path("server_log.txt")

CONDUIT_MODE: Final[int] = 0o666
"""Permissions applied to both conduits (and the lock file) after creation."""

LOCK_SUFFIX: Final[str] = ".lock"

_logger = logging.getLogger("pipecalc.server")
_worker_logger = logging.getLogger("pipecalc.worker")
_client_logger = logging.getLogger("pipecalc.client")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConduitPaths:
    """Filesystem locations of the two conduits.

    Attributes:
        request: FIFO carrying client→server request records.
        response: FIFO carrying server→client response records.

    """

    request: Path = DEFAULT_REQUEST_FIFO
    response: Path = DEFAULT_RESPONSE_FIFO

    @property
    def lock(self) -> Path:
        """Lock file that serialises client round trips on the shared response conduit."""
        return self.response.with_name(self.response.name + LOCK_SUFFIX)


@dataclass(frozen=True)
class ServerConfig:
    """Resolved server settings.

    Attributes:
        paths: Conduit locations.
        log_path: Append-only transaction log.

    """

    paths: ConduitPaths = field(default_factory=ConduitPaths)
    log_path: Path = DEFAULT_LOG_FILE


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class PipecalcError(Exception):
    """Base class for every error raised by pipecalc."""


class TransportUnavailable(PipecalcError):
    """A conduit is missing or has no peer.

    Client-visible and session-ending; never retried automatically.
    """


class ServerUnavailable(TransportUnavailable):
    """The request conduit has no reader, i.e. no server is listening."""


class WriteFailed(TransportUnavailable):
    """A record could not be written whole to a conduit."""


class FramingError(PipecalcError):
    """A record block did not have the exact record size."""

    def __init__(self, expected: int, actual: int) -> None:
        """Initialize with the expected and observed byte counts."""
        self.expected = expected
        self.actual = actual
        super().__init__(f"expected {expected} bytes, got {actual}")


class MalformedRequest(FramingError):
    """A request block had the wrong size."""


class MalformedResponse(FramingError):
    """A response block had the wrong size."""


class StartupError(PipecalcError):
    """The server could not start; no partial state was left behind."""
