# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Interactive, line-based client session."""

from __future__ import annotations

from collections.abc import Callable
from typing import TextIO

from pipecalc.rpc import OPERATIONS, ArithmeticClient, PipecalcError, is_valid_operation

__all__ = ["ClientSession"]

Echo = Callable[..., None]


class ClientSession:
    """Prompt for requests, submit them one at a time, show the outcome.

    The session ends on ``exit``, on end of input, or on the first transport
    or framing failure, which is reported and never retried.  Invalid input
    is rejected locally and the prompt repeats.
    """

    def __init__(self, client: ArithmeticClient, stdin: TextIO, echo: Echo) -> None:
        """Initialize reading from *stdin* and writing through *echo* (``typer.echo`` compatible)."""
        self._client = client
        self._stdin = stdin
        self._echo = echo

    def _ask(self, prompt: str) -> str | None:
        self._echo(prompt, nl=False)
        line = self._stdin.readline()
        if not line:
            return None
        return line.strip()

    def _read_operands(self) -> tuple[int, int] | None:
        line = self._ask("Client: Enter operands (two integers): ")
        parts = (line or "").split()
        if len(parts) != 2:
            return None
        try:
            return int(parts[0]), int(parts[1])
        except ValueError:
            return None

    def run(self) -> int:
        """Run until the user quits or communication fails.

        Returns:
            ``0`` after ``exit`` or end of input, ``1`` after a
            communication failure.

        """
        self._echo(f"Client: Connected to arithmetic server (PID: {self._client.client_id})")
        self._echo(f"Client: Available operations: {', '.join(OPERATIONS)}")
        self._echo("Client: Type 'exit' to quit\n")
        while True:
            operation = self._ask(f"Client: Enter operation ({'/'.join(OPERATIONS)}): ")
            if operation is None or operation == "exit":
                self._echo("Client: Exiting...")
                return 0
            if not is_valid_operation(operation):
                self._echo(f"Client: Invalid operation. Use {', '.join(OPERATIONS[:-1])}, or {OPERATIONS[-1]}")
                continue
            operands = self._read_operands()
            if operands is None:
                self._echo("Client: Invalid operands. Please enter two integers.")
                continue
            try:
                response = self._client.call(operation, *operands)
            except ValueError as exc:
                self._echo(f"Client: Invalid operands. {exc}")
                continue
            except PipecalcError as exc:
                self._echo(f"Client: {type(exc).__name__}: {exc}", err=True)
                self._echo("Client: Communication with server failed", err=True)
                return 1
            if response.error_flag:
                self._echo(f"Client: Error from server: {response.error_message}")
            else:
                self._echo(f"Client: Result from server: {response.result}")
            self._echo("")
