# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from coreason_tsbox.config import SandboxConfig
from coreason_tsbox.exceptions import FilesystemError, InvalidDependencyName, ValidationError
from coreason_tsbox.models import BuildResult, ExecuteRequest, RunTestRequest, TestReport
from coreason_tsbox.pipeline import Pipeline, PipelineAsync, advance, fail
from coreason_tsbox.workspace import Session, SessionState

SOURCE = "export function test(){return true;}"
TEST = "import { test as fn } from './code';\ntest('works', () => expect(fn()).toBe(true));"


@pytest.fixture
def pipeline(config: SandboxConfig) -> Any:
    pipeline = PipelineAsync(config)
    pipeline.compiler.compile = AsyncMock(return_value=BuildResult.COMPILED)
    pipeline.runner.run_tests = AsyncMock(return_value=TestReport(output="PASS ./code.test.ts\n", exit_code=0))
    return pipeline


@pytest.fixture
def sessions(pipeline: Any) -> list[Session]:
    """Record every session the pipeline creates."""
    created: list[Session] = []
    original = pipeline.workspace.create

    def create() -> Session:
        session = original()
        created.append(session)
        return session

    pipeline.workspace.create = create
    return created


def _request(**kwargs: Any) -> RunTestRequest:
    return RunTestRequest(tsCode=SOURCE, testCode=TEST, **kwargs)


def _workspaces(config: SandboxConfig) -> list[Path]:
    return list(config.temp_root.iterdir()) if config.temp_root.exists() else []


@pytest.mark.asyncio
async def test_successful_run(pipeline: Any, sessions: list[Session], config: SandboxConfig) -> None:
    with patch.object(pipeline.workspace, "destroy", wraps=pipeline.workspace.destroy) as destroy:
        response = await pipeline.run_test(_request())

    assert response.success is True
    assert response.message == "Test run completed"
    assert response.result == "PASS ./code.test.ts"
    destroy.assert_called_once_with(sessions[0])
    assert sessions[0].state is SessionState.SUCCEEDED
    assert _workspaces(config) == []


@pytest.mark.asyncio
async def test_stages_see_written_artifacts(pipeline: Any, sessions: list[Session]) -> None:
    seen: dict[str, Any] = {}

    async def compile(session: Session) -> BuildResult:
        seen["source"] = session.source_path.read_text()
        seen["test"] = session.test_path.read_text()
        seen["tsconfig"] = session.tsconfig_path.exists()
        seen["modules"] = session.modules_path.is_symlink()
        seen["state"] = session.state
        return BuildResult.DEGRADED

    pipeline.compiler.compile = compile
    response = await pipeline.run_test(_request())

    assert response.success is True
    assert seen == {
        "source": SOURCE,
        "test": TEST,
        "tsconfig": True,
        "modules": True,
        "state": SessionState.DEPENDENCIES_RESOLVED,
    }


@pytest.mark.asyncio
async def test_failing_tests_are_a_successful_response(pipeline: Any, config: SandboxConfig) -> None:
    pipeline.runner.run_tests.return_value = TestReport(output="FAIL ./code.test.ts\n  ✕ works", exit_code=1)

    response = await pipeline.run_test(_request())

    assert response.success is True
    assert response.message == "Test run completed with failures"
    assert "FAIL" in (response.result or "")
    assert _workspaces(config) == []


@pytest.mark.asyncio
async def test_empty_runner_output(pipeline: Any) -> None:
    pipeline.runner.run_tests.return_value = TestReport(output="  \n", exit_code=0)
    response = await pipeline.run_test(_request())
    assert response.result == "Test run completed with no output"


@pytest.mark.asyncio
async def test_build_failure(pipeline: Any, sessions: list[Session], config: SandboxConfig) -> None:
    pipeline.compiler.compile.return_value = BuildResult.FAILED

    response = await pipeline.run_test(_request())

    assert response.success is False
    assert response.message == "TypeScript compilation failed"
    pipeline.runner.run_tests.assert_not_called()
    assert sessions[0].state is SessionState.FAILED
    assert sessions[0].failed_stage is SessionState.DEPENDENCIES_RESOLVED
    assert _workspaces(config) == []


@pytest.mark.asyncio
async def test_install_failure(pipeline: Any, config: SandboxConfig) -> None:
    with patch.object(pipeline.installer, "install", new_callable=AsyncMock, return_value=False):
        response = await pipeline.run_test(_request(packages=["lodash"]))

    assert response.success is False
    assert response.message == "Package installation failed"
    pipeline.compiler.compile.assert_not_called()
    assert _workspaces(config) == []


@pytest.mark.asyncio
async def test_invalid_package_raises_after_teardown(
    pipeline: Any, sessions: list[Session], config: SandboxConfig
) -> None:
    with pytest.raises(InvalidDependencyName):
        await pipeline.run_test(_request(packages=["; rm -rf /"]))

    assert sessions[0].state is SessionState.FAILED
    assert sessions[0].failed_stage is SessionState.ARTIFACTS_WRITTEN
    assert _workspaces(config) == []


@pytest.mark.asyncio
async def test_unexpected_error_still_tears_down(pipeline: Any, sessions: list[Session], config: SandboxConfig) -> None:
    pipeline.runner.run_tests.side_effect = RuntimeError("disk on fire")

    with patch.object(pipeline.workspace, "destroy", wraps=pipeline.workspace.destroy) as destroy:
        with pytest.raises(RuntimeError, match="disk on fire"):
            await pipeline.run_test(_request())

    destroy.assert_called_once()
    assert sessions[0].failure_reason == "disk on fire"
    assert _workspaces(config) == []


@pytest.mark.asyncio
async def test_workspace_creation_failure_propagates(pipeline: Any) -> None:
    with patch.object(pipeline.workspace, "create", side_effect=FilesystemError("no space")):
        with patch.object(pipeline.workspace, "destroy") as destroy:
            with pytest.raises(FilesystemError):
                await pipeline.run_test(_request())
    destroy.assert_not_called()


@pytest.mark.asyncio
async def test_blank_fragments_rejected_before_session(pipeline: Any, sessions: list[Session]) -> None:
    with pytest.raises(ValidationError):
        await pipeline.run_test(RunTestRequest(tsCode="   ", testCode=TEST))
    assert sessions == []


@pytest.mark.asyncio
async def test_ts_config_reaches_workspace(pipeline: Any) -> None:
    seen: dict[str, str] = {}

    async def compile(session: Session) -> BuildResult:
        seen["tsconfig"] = session.tsconfig_path.read_text()
        return BuildResult.COMPILED

    pipeline.compiler.compile = compile
    await pipeline.run_test(_request(tsConfig={"compilerOptions": {"target": "es2022"}}))

    assert '"target": "es2022"' in seen["tsconfig"]


def test_advance_enforces_order(session: Session) -> None:
    advance(session, SessionState.ARTIFACTS_WRITTEN)
    with pytest.raises(RuntimeError, match="Illegal transition"):
        advance(session, SessionState.BUILT)


def test_failed_state_absorbs(session: Session) -> None:
    fail(session, "first")
    fail(session, "second")
    assert session.failure_reason == "first"
    with pytest.raises(RuntimeError, match="already failed"):
        advance(session, SessionState.ARTIFACTS_WRITTEN)


@pytest.mark.asyncio
async def test_execute_maps_result(config: SandboxConfig) -> None:
    pipeline = PipelineAsync(config)

    ok = await pipeline.execute(ExecuteRequest(code="1+1"))
    assert ok.success is True
    assert ok.result == 2
    assert ok.message == "Code executed successfully"

    err = await pipeline.execute(ExecuteRequest(code="throw new TypeError('bad')"))
    assert err.success is False
    assert "bad" in (err.error or "")
    assert err.execution_time >= 0


@pytest.mark.asyncio
async def test_context_manager_sweeps_temp_root(config: SandboxConfig) -> None:
    async with PipelineAsync(config) as pipeline:
        assert config.temp_root.is_dir()
        pipeline.workspace.create()
    assert _workspaces(config) == []


def test_sync_facade(config: SandboxConfig) -> None:
    with Pipeline(config) as pipeline:
        response = pipeline.execute(ExecuteRequest(code="[1, 2].map(x => x * 2)"))
    assert response.result == [2, 4]
