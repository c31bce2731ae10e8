# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Build Stage: compile the workspace's TypeScript through an escalating fallback chain."""

import json
import re
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

import aiofiles  # type: ignore[import-untyped]
from loguru import logger

from coreason_tsbox.config import SandboxConfig
from coreason_tsbox.exceptions import BuildDegraded
from coreason_tsbox.models import BuildResult, Diagnostic, SyntaxReport, ValidateOptions
from coreason_tsbox.process import describe_failure, resolve_tool, run_command
from coreason_tsbox.workspace import MODULES_DIR, Session

DIAGNOSTIC_PATTERN = re.compile(r"^(.+?)\((\d+),(\d+)\): error TS(\d+): (.+)$")
TEST_SUFFIXES = (".d.ts", ".test.ts", ".spec.ts")


@dataclass(frozen=True)
class Success:
    artifact: Path | None = None


@dataclass(frozen=True)
class Continue:
    reason: str = ""


@dataclass(frozen=True)
class Fatal:
    reason: str


StrategyOutcome = Success | Continue | Fatal


def discover_sources(session: Session) -> list[Path]:
    """All .ts files in the workspace except declarations, test files and installed modules.

    Test files are left to the runner's own transform.
    """
    return sorted(
        path
        for path in session.path.rglob("*.ts")
        if not path.name.endswith(TEST_SUFFIXES) and MODULES_DIR not in path.relative_to(session.path).parts
    )


class CompileStrategy(ABC):
    """One tier of the Build Stage fallback chain."""

    name: str = "strategy"
    degraded: bool = False

    @abstractmethod
    async def attempt(self, session: Session, sources: list[Path]) -> StrategyOutcome:
        pass  # pragma: no cover


class TscCompile(CompileStrategy):
    """Invoke tsc once per discovered file with a fixed flag set."""

    def __init__(
        self,
        config: SandboxConfig,
        name: str,
        flags: list[str],
        out_dir: str | None = None,
        degraded: bool = False,
    ):
        self.config = config
        self.name = name
        self.flags = flags
        self.out_dir = out_dir
        self.degraded = degraded

    def expected_artifact(self, session: Session) -> Path:
        if self.out_dir:
            return session.path / self.out_dir / session.compiled_path.name
        return session.compiled_path

    async def _run(self, session: Session, source: Path) -> None:
        cmd = resolve_tool("tsc", session.path, self.config) + [str(source.relative_to(session.path)), *self.flags]
        if self.out_dir:
            cmd += ["--outDir", self.out_dir]
        try:
            await run_command(cmd, cwd=session.path, timeout=self.config.compile_timeout)
        except (subprocess.SubprocessError, OSError) as e:
            raise BuildDegraded(f"{self.name} compile of {source.name} failed: {describe_failure(e)}") from e

    async def attempt(self, session: Session, sources: list[Path]) -> StrategyOutcome:
        try:
            for source in sources:
                await self._run(session, source)
        except BuildDegraded as e:
            return Continue(str(e))
        return Success(self.expected_artifact(session))


class CopyThrough(CompileStrategy):
    """Copy the source fragment verbatim under the compiled name, unless tsc already emitted one."""

    name = "copy-through"
    degraded = True

    async def attempt(self, session: Session, sources: list[Path]) -> StrategyOutcome:
        if session.compiled_path.exists():
            logger.info(f"[{session.session_id}] Keeping compiler output {session.compiled_path.name}")
            return Success(session.compiled_path)
        try:
            shutil.copyfile(session.source_path, session.compiled_path)
        except OSError as e:
            return Fatal(f"copy-through failed: {e}")
        logger.warning(f"[{session.session_id}] Using uncompiled source as {session.compiled_path.name}")
        return Success(session.compiled_path)


def default_strategies(config: SandboxConfig) -> list[CompileStrategy]:
    options = config.compiler_options
    return [
        TscCompile(
            config,
            "standard",
            [
                "--esModuleInterop",
                "--target",
                str(options.get("target", "es2020")),
                "--module",
                str(options.get("module", "commonjs")),
            ],
        ),
        TscCompile(config, "relaxed", ["--skipLibCheck", "--allowJs"], out_dir="dist", degraded=True),
        CopyThrough(),
    ]


class TypeScriptCompiler:
    """Runs the Build Stage for a session.

    Strategies are tried in order until one returns something other than
    ``Continue``. Compiler problems degrade the build instead of failing it;
    only a failed copy-through yields ``BuildResult.FAILED``.
    """

    def __init__(self, config: SandboxConfig | None = None, strategies: list[CompileStrategy] | None = None):
        self.config = config or SandboxConfig()
        self.strategies = strategies if strategies is not None else default_strategies(self.config)
        self.fallback = CopyThrough()

    async def ensure_tsconfig(self, session: Session) -> None:
        if session.tsconfig_path.exists():
            return
        async with aiofiles.open(session.tsconfig_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps({"compilerOptions": self.config.compiler_options}, indent=2))
        logger.info(f"[{session.session_id}] Created {session.tsconfig_path.name}")

    async def _run_chain(self, session: Session, sources: list[Path]) -> BuildResult:
        degraded = False
        outcome: StrategyOutcome = Fatal("no compile strategy produced a result")
        for strategy in self.strategies:
            outcome = await strategy.attempt(session, sources)
            if isinstance(outcome, Continue):
                logger.warning(f"[{session.session_id}] {outcome.reason}")
                degraded = True
                continue
            degraded = degraded or strategy.degraded
            break

        if isinstance(outcome, Fatal):
            logger.error(f"[{session.session_id}] {outcome.reason}")
            return BuildResult.FAILED
        if isinstance(outcome, Continue):
            logger.error(f"[{session.session_id}] Every compile strategy deferred")
            return BuildResult.FAILED

        if not session.compiled_path.exists():
            logger.warning(f"[{session.session_id}] {session.compiled_path.name} missing after compile")
            fallback = await self.fallback.attempt(session, sources)
            if isinstance(fallback, Fatal):
                logger.error(f"[{session.session_id}] {fallback.reason}")
                return BuildResult.FAILED
            degraded = True

        return BuildResult.DEGRADED if degraded else BuildResult.COMPILED

    async def compile(self, session: Session) -> BuildResult:
        """Compile the session workspace. Never raises."""
        logger.info(f"[{session.session_id}] Compiling TypeScript")
        try:
            sources = discover_sources(session)
            if not sources:
                logger.info(f"[{session.session_id}] No TypeScript files found, skipping compile")
                return BuildResult.COMPILED
            await self.ensure_tsconfig(session)
            result = await self._run_chain(session, sources)
        except Exception as e:
            logger.exception(f"[{session.session_id}] Unexpected compile error: {e}")
            fallback = await self.fallback.attempt(session, [])
            result = BuildResult.FAILED if isinstance(fallback, Fatal) else BuildResult.DEGRADED

        logger.info(f"[{session.session_id}] Build result: {result.value}")
        return result


def parse_diagnostics(output: str) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    for line in output.splitlines():
        match = DIAGNOSTIC_PATTERN.match(line.strip())
        if match:
            diagnostics.append(
                Diagnostic(
                    file=match.group(1),
                    line=int(match.group(2)),
                    character=int(match.group(3)),
                    code=int(match.group(4)),
                    message=match.group(5),
                )
            )
    return diagnostics


async def validate_syntax(
    code: str, options: ValidateOptions | None = None, config: SandboxConfig | None = None
) -> SyntaxReport:
    """Type-check a single TypeScript fragment without emitting anything.

    Args:
        code: The TypeScript source.
        options: Target/module overrides and strictness flags.
        config: Sandbox configuration.

    Returns:
        SyntaxReport: ``valid`` plus parsed ``file(line,col): error TSnnnn`` diagnostics.
    """
    config = config or SandboxConfig()
    options = options or ValidateOptions()
    compiler_options = {
        **config.compiler_options,
        "target": options.target or config.compiler_options.get("target", "es2020"),
        "module": options.module or config.compiler_options.get("module", "commonjs"),
        "strict": options.strict,
        "noImplicitAny": options.no_implicit_any,
        "noEmit": True,
    }

    check_dir = config.temp_root / "syntax-check" / str(uuid4())
    try:
        check_dir.mkdir(parents=True)
        async with aiofiles.open(check_dir / "check.ts", "w", encoding="utf-8") as f:
            await f.write(code)
        async with aiofiles.open(check_dir / "tsconfig.json", "w", encoding="utf-8") as f:
            await f.write(json.dumps({"compilerOptions": compiler_options, "files": ["check.ts"]}, indent=2))

        cmd = resolve_tool("tsc", check_dir, config) + ["--project", "tsconfig.json"]
        await run_command(cmd, cwd=check_dir, timeout=config.compile_timeout)
        return SyntaxReport(valid=True, config=compiler_options)
    except subprocess.CalledProcessError as e:
        details = [line for line in (e.output or "").splitlines() if line.strip()]
        diagnostics = parse_diagnostics(e.output or "")
        for diagnostic in diagnostics:
            logger.debug(f"{diagnostic.file}({diagnostic.line},{diagnostic.character}): {diagnostic.message}")
        return SyntaxReport(
            valid=False,
            error=details[0] if details else describe_failure(e),
            details=details,
            config=compiler_options,
            diagnostics=diagnostics,
        )
    except (subprocess.SubprocessError, OSError) as e:
        logger.error(f"Syntax check could not run: {describe_failure(e)}")
        return SyntaxReport(valid=False, error=describe_failure(e), config=compiler_options)
    finally:
        shutil.rmtree(check_dir, ignore_errors=True)
