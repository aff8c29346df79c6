# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Command-line interface for the pipecalc server and client.

Usage::

    pipecalc serve
    pipecalc client
    pipecalc call add 2 3
    pipecalc --debug --log-logger pipecalc.wire.transport serve
    pipecalc --format json loggers

Conduit and log paths default to the well-known locations and can be
overridden per option or through ``PIPECALC_REQUEST_FIFO``,
``PIPECALC_RESPONSE_FIFO`` and ``PIPECALC_LOG_FILE``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Annotated

import typer

from pipecalc.logging_utils import KNOWN_LOGGERS, configure_logging
from pipecalc.rpc import (
    DEFAULT_LOG_FILE,
    DEFAULT_REQUEST_FIFO,
    DEFAULT_RESPONSE_FIFO,
    ArithmeticClient,
    ConduitPaths,
    PipecalcError,
    ServerConfig,
    StartupError,
    run_server,
)
from pipecalc.session import ClientSession

# ---------------------------------------------------------------------------
# Option enums
# ---------------------------------------------------------------------------


class OutputFormat(StrEnum):
    """Output format for listing commands."""

    table = "table"
    json = "json"


class LogFormat(StrEnum):
    """Format of diagnostic log records on stderr."""

    text = "text"
    json = "json"


class LogLevel(StrEnum):
    """Accepted ``--log-level`` values."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# ---------------------------------------------------------------------------
# CLI config
# ---------------------------------------------------------------------------


@dataclass
class _CliConfig:
    """Holds resolved CLI options."""

    paths: ConduitPaths = field(default_factory=ConduitPaths)
    format: OutputFormat = OutputFormat.table
    logging_configured: bool = False
    log_format: LogFormat = LogFormat.text


app = typer.Typer(
    name="pipecalc",
    help="Arithmetic server and client over named FIFOs.",
    add_completion=False,
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def _main(
    ctx: typer.Context,
    request_fifo: Annotated[
        Path, typer.Option("--request-fifo", envvar="PIPECALC_REQUEST_FIFO", help="Request conduit path")
    ] = DEFAULT_REQUEST_FIFO,
    response_fifo: Annotated[
        Path, typer.Option("--response-fifo", envvar="PIPECALC_RESPONSE_FIFO", help="Response conduit path")
    ] = DEFAULT_RESPONSE_FIFO,
    fmt: Annotated[OutputFormat, typer.Option("--format", "-f", help="Output format for listings")] = (
        OutputFormat.table
    ),
    debug: Annotated[bool, typer.Option("--debug", help="Shorthand for --log-level DEBUG")] = False,
    log_level: Annotated[LogLevel | None, typer.Option("--log-level", help="Enable diagnostic logging")] = None,
    log_logger: Annotated[
        list[str] | None, typer.Option("--log-logger", help="Restrict logging to this logger (repeatable)")
    ] = None,
    log_format: Annotated[LogFormat, typer.Option("--log-format", help="Diagnostic log format")] = LogFormat.text,
) -> None:
    """Configure conduit paths, output, and logging."""
    config = _CliConfig(paths=ConduitPaths(request_fifo, response_fifo), format=fmt, log_format=log_format)
    level = logging.DEBUG if debug else (getattr(logging, log_level.value) if log_level is not None else None)
    if level is not None:
        known = {name for name, _, _ in KNOWN_LOGGERS}
        for name in log_logger or ():
            if name not in known:
                typer.echo(f"Warning: unknown logger '{name}'", err=True)
        configure_logging(level, loggers=log_logger or (), json_format=log_format == LogFormat.json)
        config.logging_configured = True
    ctx.obj = config


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _format_table(rows: list[dict[str, str]]) -> str:
    """Format rows as a simple column-aligned text table."""
    if not rows:
        return "(empty)"
    columns = list(rows[0].keys())
    widths = {col: max(len(col), *(len(row[col]) for row in rows)) for col in columns}
    lines = ["  ".join(col.ljust(widths[col]) for col in columns)]
    lines.append("  ".join("-" * widths[col] for col in columns))
    lines.extend("  ".join(row[col].ljust(widths[col]) for col in columns) for row in rows)
    return "\n".join(lines)


def _fail(exc: PipecalcError, code: int) -> typer.Exit:
    typer.echo(f"Error: {type(exc).__name__}: {exc}", err=True)
    return typer.Exit(code)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def serve(
    ctx: typer.Context,
    log_file: Annotated[
        Path, typer.Option("--log-file", envvar="PIPECALC_LOG_FILE", help="Append-only transaction log")
    ] = DEFAULT_LOG_FILE,
) -> None:
    """Run the server in the foreground until SIGTERM or Ctrl-C."""
    config: _CliConfig = ctx.obj
    if not config.logging_configured:
        # The server's console is its diagnostic channel.
        configure_logging(logging.INFO, json_format=config.log_format == LogFormat.json)

    def _announce() -> None:
        typer.echo(f"Server: Waiting for client requests (PID: {os.getpid()})... (Press Ctrl+C to stop)")

    try:
        run_server(ServerConfig(paths=config.paths, log_path=log_file), on_ready=_announce)
    except StartupError as exc:
        raise _fail(exc, 1) from None
    typer.echo("Server: Shutdown complete")


@app.command()
def client(ctx: typer.Context) -> None:
    """Start an interactive session against a running server."""
    config: _CliConfig = ctx.obj
    session = ClientSession(ArithmeticClient(config.paths), sys.stdin, typer.echo)
    code = session.run()
    if code:
        raise typer.Exit(code)


@app.command(context_settings={"ignore_unknown_options": True})
def call(
    ctx: typer.Context,
    operation: Annotated[str, typer.Argument(help="add, sub, mul or div")],
    operand1: Annotated[int, typer.Argument(help="Left operand")],
    operand2: Annotated[int, typer.Argument(help="Right operand")],
) -> None:
    """Send one request and print the result.

    Exits 0 with the result, 1 with the server's error message, or 2 when
    the server cannot be reached.
    """
    config: _CliConfig = ctx.obj
    try:
        response = ArithmeticClient(config.paths).call(operation, operand1, operand2)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from None
    except PipecalcError as exc:
        raise _fail(exc, 2) from None
    if response.error_flag:
        typer.echo(f"Error: {response.error_message}", err=True)
        raise typer.Exit(1)
    typer.echo(str(response.result))


@app.command()
def loggers(ctx: typer.Context) -> None:
    """List the loggers pipecalc emits on."""
    config: _CliConfig = ctx.obj
    rows = [{"name": name, "description": desc, "scenario": scenario} for name, desc, scenario in KNOWN_LOGGERS]
    if config.format == OutputFormat.json:
        typer.echo(json.dumps(rows, indent=2))
    else:
        typer.echo(_format_table(rows))
