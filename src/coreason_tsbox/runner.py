# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import json
import os
import subprocess

import aiofiles  # type: ignore[import-untyped]
from loguru import logger

from coreason_tsbox.config import SandboxConfig
from coreason_tsbox.exceptions import RunnerFailure
from coreason_tsbox.models import TestReport
from coreason_tsbox.process import describe_failure, resolve_tool, run_command
from coreason_tsbox.workspace import MODULES_DIR, Session, WorkspaceManager

RESULT_FILE = "test-results.txt"
OVERRIDE_FILE = "jest.config.override.json"
TS_JEST_FILE = "ts-jest.config.json"


class JestRunner:
    """Test Stage: runs jest against a compiled workspace and captures its report.

    Failing tests are an expected outcome, so the runner's own report is
    returned as text instead of being raised.
    """

    def __init__(self, config: SandboxConfig | None = None, workspace: WorkspaceManager | None = None):
        self.config = config or SandboxConfig()
        self.workspace = workspace or WorkspaceManager(self.config)

    def jest_override(self, session: Session) -> dict:
        local_modules = str(session.modules_path)
        return {
            "verbose": True,
            "testEnvironment": "node",
            "preset": "ts-jest",
            "reporters": ["default"],
            "transform": {"^.+\\.tsx?$": ["ts-jest", {"tsconfig": str(session.tsconfig_path)}]},
            "moduleDirectories": [MODULES_DIR, local_modules],
            "modulePaths": [local_modules, str(self.config.shared_modules_path)],
            "transformIgnorePatterns": ["/node_modules/(?!(lodash|moment)/)"],
        }

    async def write_overrides(self, session: Session) -> None:
        async with aiofiles.open(session.path / OVERRIDE_FILE, "w", encoding="utf-8") as f:
            await f.write(json.dumps(self.jest_override(session), indent=2))

        ts_jest = {"isolatedModules": True, "esModuleInterop": True, "allowJs": True}
        async with aiofiles.open(session.path / TS_JEST_FILE, "w", encoding="utf-8") as f:
            await f.write(json.dumps(ts_jest, indent=2))

    async def _read_results(self, session: Session) -> str | None:
        result_path = session.path / RESULT_FILE
        if not result_path.exists():
            return None
        async with aiofiles.open(result_path, "r", encoding="utf-8", errors="replace") as f:
            return await f.read()

    async def _invoke(self, session: Session) -> str:
        cmd = resolve_tool("jest", session.path, self.config) + [
            "--no-watchman",
            "--no-cache",
            "--verbose",
            "--config",
            OVERRIDE_FILE,
        ]
        env = {**os.environ, "NODE_PATH": str(self.config.shared_modules_path)}
        logger.info(f"[{session.session_id}] Running {' '.join(cmd)}")

        try:
            with open(session.path / RESULT_FILE, "w", encoding="utf-8") as out:
                await run_command(cmd, cwd=session.path, timeout=self.config.execution_timeout, env=env, stdout=out)
        except subprocess.CalledProcessError as e:
            output = await self._read_results(session) or e.output or e.stdout or ""
            raise RunnerFailure(f"jest exited with code {e.returncode}", output=output, exit_code=e.returncode) from e
        except subprocess.TimeoutExpired as e:
            output = await self._read_results(session) or ""
            raise RunnerFailure(describe_failure(e), output=output) from e

        output = await self._read_results(session)
        if output is None:
            logger.error(f"[{session.session_id}] Result file missing after test run")
            return "Test run completed but the result file could not be read"
        return output

    async def run_tests(self, session: Session) -> TestReport:
        """Run the workspace's tests. Never raises.

        Returns:
            TestReport: The runner's merged stdout/stderr and exit status.
        """
        logger.info(f"[{session.session_id}] Running jest")
        try:
            await self.write_overrides(session)
            self.workspace.link_modules(session, self.config.runner_modules)
            output = await self._invoke(session)
            return TestReport(output=output, exit_code=0)
        except RunnerFailure as e:
            logger.warning(f"[{session.session_id}] Test runner failed: {e}")
            if e.output:
                return TestReport(output=e.output, exit_code=e.exit_code, timed_out=e.exit_code is None)
            return TestReport(
                output=f"Error while running tests: {e}", exit_code=e.exit_code, timed_out=e.exit_code is None
            )
        except Exception as e:
            logger.exception(f"[{session.session_id}] Test runner could not start: {e}")
            return TestReport(output=f"Error while running tests: {e}")
