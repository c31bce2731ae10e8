# src/coreason_tsbox/models/__init__.py

"""
Data models for the TypeScript test sandbox.
"""

from .payloads import (
    ExecuteOptions,
    ExecuteRequest,
    ExecuteResponse,
    RunTestRequest,
    TestRunResponse,
    ValidateOptions,
    ValidateRequest,
)
from .results import BuildResult, Diagnostic, ExecutionResult, SyntaxReport, TestReport

__all__ = [
    "BuildResult",
    "Diagnostic",
    "ExecuteOptions",
    "ExecuteRequest",
    "ExecuteResponse",
    "ExecutionResult",
    "RunTestRequest",
    "SyntaxReport",
    "TestReport",
    "TestRunResponse",
    "ValidateOptions",
    "ValidateRequest",
]
