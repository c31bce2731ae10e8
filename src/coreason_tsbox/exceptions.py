# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Error taxonomy for the build-and-execute pipeline."""


class SandboxError(Exception):
    """Base class for all sandbox errors."""


class ValidationError(SandboxError):
    """A request is malformed or missing required fields."""


class InvalidDependencyName(SandboxError):
    """A dependency declaration failed the name allowlist."""

    def __init__(self, declaration: str):
        self.declaration = declaration
        super().__init__(f"Invalid package name: {declaration!r}")


class FilesystemError(SandboxError):
    """A workspace could not be created or torn down."""


class BuildDegraded(SandboxError):
    """The compiler is unavailable or failing; a best-effort artifact is used instead."""


class RunnerFailure(SandboxError):
    """The test runner exited with a non-zero status."""

    def __init__(self, message: str, output: str = "", exit_code: int | None = None):
        self.output = output
        self.exit_code = exit_code
        super().__init__(message)


class SandboxFault(SandboxError):
    """The embedded interpreter failed outside of script evaluation."""
