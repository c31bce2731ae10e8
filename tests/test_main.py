# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from typing import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from mcp.types import TextContent

from coreason_tsbox.exceptions import InvalidDependencyName
from coreason_tsbox.main import execute_code, main, run_test, validate_code
from coreason_tsbox.models import Diagnostic, ExecuteResponse, SyntaxReport, TestRunResponse


@pytest.fixture
def mock_pipeline() -> Generator[MagicMock, None, None]:
    with patch("coreason_tsbox.main.pipeline", new_callable=MagicMock) as mock:
        # Configure methods to be awaitable
        mock.run_test = AsyncMock()
        mock.execute = AsyncMock()
        mock.validate = AsyncMock()
        yield mock


@pytest.mark.asyncio
async def test_run_test_tool(mock_pipeline: MagicMock) -> None:
    mock_pipeline.run_test.return_value = TestRunResponse(success=True, message="Test run completed", result="PASS")

    result = await run_test("export const a = 1;", "test('a', () => {});", packages=["lodash"])

    assert [r.text for r in result] == ["Test run completed", "RESULT:\nPASS"]
    request = mock_pipeline.run_test.call_args[0][0]
    assert request.packages == ["lodash"]


@pytest.mark.asyncio
async def test_run_test_tool_failure(mock_pipeline: MagicMock) -> None:
    mock_pipeline.run_test.return_value = TestRunResponse(
        success=False, message="TypeScript compilation failed", error="no artifact"
    )

    result = await run_test("x", "y")

    assert result[-1].text == "ERROR:\nno artifact"


@pytest.mark.asyncio
async def test_run_test_tool_invalid_package(mock_pipeline: MagicMock) -> None:
    mock_pipeline.run_test.side_effect = InvalidDependencyName("$(id)")

    result = await run_test("x", "y", packages=["$(id)"])

    assert result[0].text == "Invalid package name: $(id)"


@pytest.mark.asyncio
async def test_run_test_tool_error(mock_pipeline: MagicMock) -> None:
    mock_pipeline.run_test.side_effect = RuntimeError("boom")
    result = await run_test("x", "y")
    assert isinstance(result[0], TextContent)
    assert result[0].text == "Error running tests: boom"


@pytest.mark.asyncio
async def test_execute_code_tool(mock_pipeline: MagicMock) -> None:
    mock_pipeline.execute.return_value = ExecuteResponse(
        success=True, message="Code executed successfully", result=2, execution_time=3
    )

    result = await execute_code("1+1", timeout=100)

    assert [r.text for r in result] == ["RESULT:\n2", "Duration: 3ms"]
    assert mock_pipeline.execute.call_args[0][0].options.timeout == 100


@pytest.mark.asyncio
async def test_execute_code_tool_error(mock_pipeline: MagicMock) -> None:
    mock_pipeline.execute.return_value = ExecuteResponse(
        success=False, message="Execution failed", error="InternalError: interrupted", execution_time=51
    )

    result = await execute_code("while(true){}")

    assert result[0].text == "ERROR:\nInternalError: interrupted"


@pytest.mark.asyncio
async def test_validate_code_tool(mock_pipeline: MagicMock) -> None:
    mock_pipeline.validate.return_value = SyntaxReport(
        valid=False,
        error="check.ts(1,7): error TS2322: nope",
        diagnostics=[Diagnostic(file="check.ts", line=1, character=7, code=2322, message="nope")],
    )

    result = await validate_code("const a: number = 'x';")

    assert result[0].text == "check.ts(1,7): TS2322 nope"


@pytest.mark.asyncio
async def test_validate_code_tool_valid(mock_pipeline: MagicMock) -> None:
    mock_pipeline.validate.return_value = SyntaxReport(valid=True)
    result = await validate_code("const a = 1;")
    assert result[0].text == "Valid"


def test_main_runs_server() -> None:
    with patch("coreason_tsbox.main.mcp") as mock_mcp:
        main()
        mock_mcp.run.assert_called_once()
