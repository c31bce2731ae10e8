# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import subprocess
from pathlib import Path
from typing import Any, Callable

import pytest

from coreason_tsbox.config import SandboxConfig
from coreason_tsbox.workspace import Session, WorkspaceManager

SHARED_MODULES = ["typescript", "jest", "ts-jest", "lodash", "moment", "left-pad"]


@pytest.fixture
def shared_modules(tmp_path: Path) -> Path:
    shared = tmp_path / "shared_modules"
    for name in SHARED_MODULES:
        (shared / name).mkdir(parents=True)
        (shared / name / "package.json").write_text(f'{{"name": "{name}"}}')
    return shared


@pytest.fixture
def config(tmp_path: Path, shared_modules: Path) -> SandboxConfig:
    return SandboxConfig(
        temp_root=tmp_path / "temp",
        shared_modules_path=shared_modules,
        execution_timeout=5.0,
        package_install_timeout=5.0,
        compile_timeout=5.0,
    )


@pytest.fixture
def workspace_manager(config: SandboxConfig) -> WorkspaceManager:
    return WorkspaceManager(config)


@pytest.fixture
def session(workspace_manager: WorkspaceManager) -> Session:
    session = workspace_manager.create()
    session.source_path.write_text("export function test() { return true; }\n")
    session.test_path.write_text(
        "import { test as fn } from './code';\n" "test('works', () => { expect(fn()).toBe(true); });\n"
    )
    return session


def completed(cmd: list[str], stdout: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(cmd, 0, stdout=stdout)


@pytest.fixture
def fake_command() -> Callable[..., Any]:
    """Build an async stand-in for run_command from a plain callback."""

    def factory(callback: Callable[..., Any] | None = None) -> Callable[..., Any]:
        async def run(
            cmd: list[str], cwd: Path, timeout: float, env: dict[str, str] | None = None, stdout: Any = None
        ) -> subprocess.CompletedProcess[str]:
            if callback is not None:
                result = callback(cmd, cwd, stdout)
                if result is not None:
                    return result
            return completed(cmd)

        return run

    return factory
