# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Typed outcomes produced by the pipeline stages."""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class BuildResult(str, Enum):
    """Tri-state outcome of the Build Stage."""

    COMPILED = "compiled"
    DEGRADED = "degraded"
    FAILED = "failed"

    @property
    def runnable(self) -> bool:
        return self is not BuildResult.FAILED


class ExecutionResult(BaseModel):
    """Result of a single evaluation in the embedded interpreter.

    Tagged so that a script legitimately returning ``null`` is distinguishable
    from a failed evaluation.
    """

    status: Literal["ok", "error"]
    value: Any = None
    error: str | None = None
    elapsed_ms: int = 0

    @classmethod
    def ok(cls, value: Any, elapsed_ms: int) -> "ExecutionResult":
        return cls(status="ok", value=value, elapsed_ms=elapsed_ms)

    @classmethod
    def err(cls, message: str, elapsed_ms: int) -> "ExecutionResult":
        return cls(status="error", error=message, elapsed_ms=elapsed_ms)

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"


class TestReport(BaseModel):
    """Captured output of one test-runner invocation."""

    __test__ = False

    output: str
    exit_code: int | None = None
    timed_out: bool = False

    @property
    def passed(self) -> bool:
        return self.exit_code == 0


class Diagnostic(BaseModel):
    file: str
    line: int
    character: int
    code: int
    message: str


class SyntaxReport(BaseModel):
    """Result of a standalone type-check of a TypeScript fragment."""

    valid: bool
    error: str | None = None
    details: list[str] = Field(default_factory=list)
    config: dict[str, Any] = Field(default_factory=dict)
    diagnostics: list[Diagnostic] = Field(default_factory=list)
