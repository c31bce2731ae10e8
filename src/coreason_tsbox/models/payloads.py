# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Request and response payloads of the HTTP surface."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RunTestRequest(BaseModel):
    """Body of ``POST /run-test``."""

    model_config = ConfigDict(populate_by_name=True)

    ts_code: str = Field(alias="tsCode", min_length=1)
    test_code: str = Field(alias="testCode", min_length=1)
    packages: list[str] = Field(default_factory=list)
    ts_config: dict[str, Any] | None = Field(default=None, alias="tsConfig")


class ExecuteOptions(BaseModel):
    """Per-call limits for the embedded interpreter.

    ``memory`` is in bytes and ``timeout`` in milliseconds; either falls back to
    the configured default when omitted.
    """

    memory: int | None = Field(default=None, gt=0)
    timeout: int | None = Field(default=None, gt=0)
    context: dict[str, Any] | None = None


class ExecuteRequest(BaseModel):
    """Body of ``POST /execute``."""

    code: str = Field(min_length=1)
    options: ExecuteOptions = Field(default_factory=ExecuteOptions)


class ValidateOptions(BaseModel):
    target: str | None = None
    module: str | None = None
    strict: bool = True
    no_implicit_any: bool = Field(default=True, alias="noImplicitAny")

    model_config = ConfigDict(populate_by_name=True)


class ValidateRequest(BaseModel):
    """Body of ``POST /validate``."""

    code: str = Field(min_length=1)
    options: ValidateOptions = Field(default_factory=ValidateOptions)


class TestRunResponse(BaseModel):
    __test__ = False

    success: bool
    message: str
    result: str | None = None
    error: str | None = None


class ExecuteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    result: Any = None
    error: str | None = None
    execution_time: int = Field(default=0, alias="executionTime")
