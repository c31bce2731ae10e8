# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import asyncio
import subprocess
from pathlib import Path
from typing import IO

from loguru import logger

from coreason_tsbox.config import SandboxConfig


async def run_command(
    cmd: list[str],
    cwd: Path,
    timeout: float,
    env: dict[str, str] | None = None,
    stdout: IO[str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run an external tool without blocking the event loop.

    The command is an argv list and never goes through a shell. When ``stdout``
    is given, stdout and stderr are both redirected into it; otherwise they are
    captured and merged on the returned object.

    Raises:
        subprocess.CalledProcessError: If the tool exits non-zero.
        subprocess.TimeoutExpired: If the tool was killed after ``timeout`` seconds.
        OSError: If the tool could not be launched.
    """
    logger.debug(f"Running {' '.join(cmd)} in {cwd}")
    if stdout is not None:
        return await asyncio.to_thread(
            subprocess.run,
            cmd,
            cwd=cwd,
            env=env,
            timeout=timeout,
            check=True,
            text=True,
            stdout=stdout,
            stderr=subprocess.STDOUT,
        )
    return await asyncio.to_thread(
        subprocess.run,
        cmd,
        cwd=cwd,
        env=env,
        timeout=timeout,
        check=True,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
    )


def resolve_tool(name: str, workdir: Path, config: SandboxConfig) -> list[str]:
    """Locate a Node.js command line tool.

    Prefers ``workdir/node_modules/.bin``, then the shared
    dependency directory, and finally defers to ``npx``.
    """
    for bin_dir in (workdir / "node_modules" / ".bin", config.shared_modules_path / ".bin"):
        candidate = bin_dir / name
        if candidate.exists():
            return [str(candidate)]
    return ["npx", name]


def describe_failure(error: BaseException) -> str:
    """Render a child-process failure for logs and error bodies."""
    if isinstance(error, subprocess.TimeoutExpired):
        return f"{error.cmd[0] if error.cmd else 'command'} timed out after {error.timeout}s"
    if isinstance(error, subprocess.CalledProcessError):
        output = (error.output or "").strip()
        return f"exit code {error.returncode}: {output}" if output else f"exit code {error.returncode}"
    return str(error)
