# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import anyio
from loguru import logger

from coreason_tsbox.compiler import TypeScriptCompiler, validate_syntax
from coreason_tsbox.config import SandboxConfig
from coreason_tsbox.dependencies import DependencyInstaller
from coreason_tsbox.exceptions import ValidationError
from coreason_tsbox.executor import ExecutionSandbox
from coreason_tsbox.models import (
    ExecuteRequest,
    ExecuteResponse,
    RunTestRequest,
    SyntaxReport,
    TestRunResponse,
    ValidateRequest,
)
from coreason_tsbox.runner import JestRunner
from coreason_tsbox.workspace import Session, SessionState, WorkspaceManager

# Strict order of the full-test pipeline; any state may also move to FAILED.
PIPELINE_ORDER = [
    SessionState.CREATED,
    SessionState.ARTIFACTS_WRITTEN,
    SessionState.DEPENDENCIES_RESOLVED,
    SessionState.BUILT,
    SessionState.TESTED,
    SessionState.SUCCEEDED,
]


def advance(session: Session, state: SessionState) -> None:
    """Move a session to the next pipeline state.

    Raises:
        RuntimeError: If ``state`` is not the direct successor of the current state.
    """
    if session.state.terminal:
        raise RuntimeError(f"Session {session.session_id} is already {session.state.value}")
    if PIPELINE_ORDER.index(state) != PIPELINE_ORDER.index(session.state) + 1:
        raise RuntimeError(f"Illegal transition {session.state.value} -> {state.value}")
    session.state = state


def fail(session: Session, reason: str) -> None:
    if session.state.terminal:
        return
    session.failed_stage = session.state
    session.failure_reason = reason
    session.state = SessionState.FAILED
    logger.warning(f"[{session.session_id}] Pipeline failed after {session.failed_stage.value}: {reason}")


class PipelineAsync:
    """Async-native pipeline service (The Core).

    Sequences Workspace -> Dependencies -> Build -> Test for ``run_test`` and
    hands ``execute`` straight to the embedded interpreter. The workspace is
    destroyed on every exit path.
    """

    def __init__(self, config: SandboxConfig | None = None):
        self.config = config or SandboxConfig()
        self.workspace = WorkspaceManager(self.config)
        self.installer = DependencyInstaller(self.config, self.workspace)
        self.compiler = TypeScriptCompiler(self.config)
        self.runner = JestRunner(self.config, self.workspace)
        self.sandbox = ExecutionSandbox(self.config)

    async def __aenter__(self) -> "PipelineAsync":
        """Prepares the temp root."""
        self.workspace.ensure_root()
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Sweeps leftover workspaces if configured to."""
        if self.config.cleanup_on_shutdown:
            self.workspace.cleanup_all()

    async def run_test(self, request: RunTestRequest) -> TestRunResponse:
        """Build the submitted code and run its tests in a fresh workspace.

        Args:
            request: Source fragment, test fragment, extra packages and tsconfig.

        Returns:
            TestRunResponse: ``success`` is True whenever the runner produced a
            report, including reports of failing tests.

        Raises:
            ValidationError: If either fragment is blank. No session is created.
            FilesystemError: If the workspace cannot be created.
            InvalidDependencyName: If a package declaration fails the allowlist.
        """
        if not request.ts_code.strip() or not request.test_code.strip():
            raise ValidationError("Both the source and the test code must be non-empty")

        session = self.workspace.create()
        try:
            await self.workspace.write_artifacts(session, request.ts_code, request.test_code)
            await self.workspace.write_config_files(session, request.ts_config)
            advance(session, SessionState.ARTIFACTS_WRITTEN)

            mode = self.workspace.link_shared_dependencies(session)
            logger.info(f"[{session.session_id}] Shared dependencies: {mode.value}")
            if not await self.installer.install(session, request.packages):
                fail(session, "package installation failed")
                return TestRunResponse(
                    success=False,
                    message="Package installation failed",
                    error="Unable to install the requested packages; check the package names",
                )
            advance(session, SessionState.DEPENDENCIES_RESOLVED)

            build = await self.compiler.compile(session)
            if not build.runnable:
                fail(session, "compilation failed")
                return TestRunResponse(
                    success=False,
                    message="TypeScript compilation failed",
                    error="The source could not be compiled or copied into the workspace",
                )
            advance(session, SessionState.BUILT)

            report = await self.runner.run_tests(session)
            advance(session, SessionState.TESTED)
            advance(session, SessionState.SUCCEEDED)
            logger.info(f"[{session.session_id}] Test run finished, {len(report.output)} chars of output")

            return TestRunResponse(
                success=True,
                message="Test run completed" if report.passed else "Test run completed with failures",
                result=report.output.strip() or "Test run completed with no output",
            )
        except BaseException as e:
            fail(session, str(e) or type(e).__name__)
            raise
        finally:
            self.workspace.destroy(session)

    async def execute(self, request: ExecuteRequest) -> ExecuteResponse:
        """Evaluate a fragment directly in the embedded interpreter."""
        result = await self.sandbox.execute(request.code, request.options)
        return ExecuteResponse(
            success=result.is_ok,
            message="Code executed successfully" if result.is_ok else "Execution failed",
            result=result.value,
            error=result.error,
            execution_time=result.elapsed_ms,
        )

    async def validate(self, request: ValidateRequest) -> SyntaxReport:
        """Type-check a fragment without building a workspace."""
        return await validate_syntax(request.code, request.options, self.config)


class Pipeline:
    """Sync Facade for PipelineAsync (The Facade).

    Wraps PipelineAsync and executes methods via anyio.run.
    """

    def __init__(self, config: SandboxConfig | None = None):
        self._async = PipelineAsync(config)

    def __enter__(self) -> "Pipeline":
        anyio.run(self._async.__aenter__)
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        anyio.run(self._async.__aexit__, exc_type, exc_val, exc_tb)

    def run_test(self, request: RunTestRequest) -> TestRunResponse:
        return anyio.run(self._async.run_test, request)

    def execute(self, request: ExecuteRequest) -> ExecuteResponse:
        return anyio.run(self._async.execute, request)

    def validate(self, request: ValidateRequest) -> SyntaxReport:
        return anyio.run(self._async.validate, request)
