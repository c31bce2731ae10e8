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
import re
import subprocess
from dataclasses import dataclass

import aiofiles  # type: ignore[import-untyped]
from loguru import logger

from coreason_tsbox.config import SandboxConfig
from coreason_tsbox.exceptions import InvalidDependencyName
from coreason_tsbox.process import describe_failure, run_command
from coreason_tsbox.workspace import LinkMode, Session, WorkspaceManager

# Optional @scope/, a name, then an optional @version. Nothing a shell or
# npm could read as an operator or a flag.
NAME_PATTERN = re.compile(
    r"^(?:@[A-Za-z0-9][A-Za-z0-9._-]*/)?[A-Za-z0-9][A-Za-z0-9._-]*(?:@[A-Za-z0-9._^~*+-]+)?$"
)
DEFAULT_VERSION = "latest"

NPM_INSTALL = ["npm", "install", "--legacy-peer-deps", "--no-fund", "--no-audit", "--loglevel=error"]


@dataclass(frozen=True)
class DependencyDeclaration:
    name: str
    version: str = DEFAULT_VERSION

    @classmethod
    def parse(cls, literal: str) -> "DependencyDeclaration":
        """Parse ``name``, ``name@version``, ``@scope/name`` or ``@scope/name@version``.

        Raises:
            InvalidDependencyName: If the literal fails the name allowlist.
        """
        if not isinstance(literal, str) or not NAME_PATTERN.match(literal):
            raise InvalidDependencyName(str(literal))

        # A leading "@" belongs to the scope, not the version.
        at = literal.find("@", 1)
        if at == -1:
            return cls(name=literal)
        return cls(name=literal[:at], version=literal[at + 1 :])

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


def validate_declarations(literals: list[str]) -> list[DependencyDeclaration]:
    """Parse every declaration, failing on the first invalid one."""
    return [DependencyDeclaration.parse(literal) for literal in literals]


def normalize_manifest(declarations: list[DependencyDeclaration]) -> dict[str, str]:
    """Key declarations by base name; a later duplicate wins."""
    manifest: dict[str, str] = {}
    for declaration in declarations:
        manifest[declaration.name] = declaration.version
    return manifest


class DependencyInstaller:
    """Installs extra npm packages into a session workspace."""

    def __init__(self, config: SandboxConfig | None = None, workspace: WorkspaceManager | None = None):
        self.config = config or SandboxConfig()
        self.workspace = workspace or WorkspaceManager(self.config)

    async def _merge_manifest(self, session: Session, declarations: list[DependencyDeclaration]) -> None:
        manifest: dict = {"name": "ts-test-sandbox", "version": "1.0.0", "dependencies": {}}
        if session.manifest_path.exists():
            async with aiofiles.open(session.manifest_path, "r", encoding="utf-8") as f:
                manifest = json.loads(await f.read())

        dependencies = manifest.get("dependencies") or {}
        dependencies.update(normalize_manifest(declarations))
        manifest["dependencies"] = dependencies

        async with aiofiles.open(session.manifest_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(manifest, indent=2))

    def _verify(self, session: Session, declarations: list[DependencyDeclaration]) -> None:
        for declaration in declarations:
            if (session.modules_path / declaration.name).exists():
                logger.info(f"[{session.session_id}] Package {declaration.name} installed")
                continue
            logger.warning(f"[{session.session_id}] Package {declaration.name} missing after install")
            self.workspace.link_modules(session, [declaration.name])
            if not (session.modules_path / declaration.name).exists():
                logger.warning(f"[{session.session_id}] Package {declaration.name} unavailable")

    async def install(self, session: Session, literals: list[str]) -> bool:
        """Install the declared packages into the session workspace.

        Args:
            session: The session whose workspace receives the packages.
            literals: Raw declarations such as ``lodash`` or ``lodash@4.17.21``.

        Returns:
            bool: True if the packages were installed, or if the whole shared
            dependency directory could be linked as a last resort.

        Raises:
            InvalidDependencyName: If any declaration fails the allowlist. Nothing
                is written in that case.
        """
        if not literals:
            return True

        declarations = validate_declarations(literals)
        logger.info(f"[{session.session_id}] Installing packages: {', '.join(map(str, declarations))}")

        try:
            await self._merge_manifest(session, declarations)
            self.workspace.detach_shared_dependencies(session)
            result = await run_command(NPM_INSTALL, cwd=session.path, timeout=self.config.package_install_timeout)
            if result.stdout:
                logger.debug(f"[{session.session_id}] npm output: {result.stdout.strip()}")
        except (subprocess.SubprocessError, OSError, ValueError) as e:
            logger.error(f"[{session.session_id}] Package installation failed: {describe_failure(e)}")
            mode = self.workspace.link_shared_dependencies(session)
            return mode is LinkMode.LINKED

        self._verify(session, declarations)
        self.workspace.link_modules(session, self.config.critical_modules)
        logger.info(f"[{session.session_id}] Package installation complete")
        return True
