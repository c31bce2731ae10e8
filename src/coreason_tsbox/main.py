# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from typing import Any

from mcp.server.fastmcp import FastMCP
from mcp.types import TextContent

from coreason_tsbox.exceptions import InvalidDependencyName, ValidationError
from coreason_tsbox.models import ExecuteOptions, ExecuteRequest, RunTestRequest, ValidateOptions, ValidateRequest
from coreason_tsbox.pipeline import PipelineAsync
from coreason_tsbox.utils.logger import logger

# Initialize Pipeline Logic
pipeline = PipelineAsync()

# Initialize MCP Server
mcp = FastMCP("coreason-tsbox")


@mcp.tool()  # type: ignore[misc]
async def run_test(
    ts_code: str, test_code: str, packages: list[str] | None = None, ts_config: dict[str, Any] | None = None
) -> list[TextContent]:
    """
    Compile TypeScript code and run its Jest tests in an isolated workspace.
    Returns the test runner's report.
    """
    try:
        request = RunTestRequest(tsCode=ts_code, testCode=test_code, packages=packages or [], tsConfig=ts_config)
        result = await pipeline.run_test(request)
    except InvalidDependencyName as e:
        return [TextContent(type="text", text=f"Invalid package name: {e.declaration}")]
    except ValidationError as e:
        return [TextContent(type="text", text=str(e))]
    except Exception as e:
        logger.exception(f"run_test tool failed: {e}")
        return [TextContent(type="text", text=f"Error running tests: {e!s}")]

    output = [TextContent(type="text", text=result.message)]
    if result.result:
        output.append(TextContent(type="text", text=f"RESULT:\n{result.result}"))
    if result.error:
        output.append(TextContent(type="text", text=f"ERROR:\n{result.error}"))
    return output


@mcp.tool()  # type: ignore[misc]
async def execute_code(code: str, memory: int | None = None, timeout: int | None = None) -> list[TextContent]:
    """
    Evaluate JavaScript in the embedded interpreter.
    ``memory`` is in bytes, ``timeout`` in milliseconds.
    """
    try:
        request = ExecuteRequest(code=code, options=ExecuteOptions(memory=memory, timeout=timeout))
        result = await pipeline.execute(request)
    except Exception as e:
        return [TextContent(type="text", text=f"Error executing code: {e!s}")]

    output: list[TextContent] = []
    if result.success:
        output.append(TextContent(type="text", text=f"RESULT:\n{result.result!r}"))
    else:
        output.append(TextContent(type="text", text=f"ERROR:\n{result.error}"))
    output.append(TextContent(type="text", text=f"Duration: {result.execution_time}ms"))
    return output


@mcp.tool()  # type: ignore[misc]
async def validate_code(code: str, strict: bool = True) -> list[TextContent]:
    """
    Type-check TypeScript code without running it.
    """
    try:
        report = await pipeline.validate(ValidateRequest(code=code, options=ValidateOptions(strict=strict)))
    except Exception as e:
        return [TextContent(type="text", text=f"Error validating code: {e!s}")]

    if report.valid:
        return [TextContent(type="text", text="Valid")]
    lines = [f"{d.file}({d.line},{d.character}): TS{d.code} {d.message}" for d in report.diagnostics]
    return [TextContent(type="text", text="\n".join(lines) or report.error or "Invalid")]


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":  # pragma: no cover
    main()
