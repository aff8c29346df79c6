# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Shared test fixtures for pipecalc tests."""

from __future__ import annotations

import os
import subprocess
import sys
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import pytest

from pipecalc.rpc import ConduitPaths, ServerConfig

_ROOT = Path(__file__).parent.parent
_SERVE_FIXTURE = str(Path(__file__).parent / "serve_fixture.py")


@dataclass
class RunningServer:
    """A server subprocess started by the ``server`` fixture."""

    proc: subprocess.Popen[bytes]
    pid: int
    config: ServerConfig

    @property
    def paths(self) -> ConduitPaths:
        """Conduit locations of this server."""
        return self.config.paths


def _subprocess_env() -> dict[str, str]:
    """Environment that makes the checkout importable in the child."""
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(p for p in (str(_ROOT), env.get("PYTHONPATH", "")) if p)
    return env


def start_server(config: ServerConfig, *, capture_stderr: bool = False) -> RunningServer:
    """Launch ``serve_fixture.py`` for *config* and wait for its readiness line.

    With *capture_stderr* the server's warnings (and its workers') are kept
    on ``proc.stderr`` for the test to read after ``stop_server``.
    """
    proc = subprocess.Popen(
        [
            sys.executable,
            _SERVE_FIXTURE,
            str(config.paths.request),
            str(config.paths.response),
            str(config.log_path),
        ],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE if capture_stderr else None,
        env=_subprocess_env(),
    )
    assert proc.stdout is not None
    line = proc.stdout.readline().decode().strip()
    if not line.startswith("READY:"):
        proc.kill()
        proc.wait(timeout=5)
        raise AssertionError(f"Expected READY:<pid>, got: {line!r}")
    return RunningServer(proc=proc, pid=int(line.split(":", 1)[1]), config=config)


def stop_server(server: RunningServer) -> int:
    """Send SIGTERM and wait for a clean exit; returns the exit status."""
    if server.proc.poll() is None:
        server.proc.terminate()
    try:
        return server.proc.wait(timeout=5)
    finally:
        if server.proc.stdout is not None:
            server.proc.stdout.close()


@pytest.fixture()
def server_config(tmp_path: Path) -> ServerConfig:
    """Conduit and log paths private to one test."""
    return ServerConfig(
        paths=ConduitPaths(request=tmp_path / "fifo_request", response=tmp_path / "fifo_response"),
        log_path=tmp_path / "server_log.txt",
    )


@pytest.fixture()
def server(server_config: ServerConfig) -> Iterator[RunningServer]:
    """Run a server subprocess for the duration of one test."""
    running = start_server(server_config)
    try:
        yield running
    finally:
        if running.proc.poll() is None:
            stop_server(running)
        elif running.proc.stdout is not None:
            running.proc.stdout.close()
