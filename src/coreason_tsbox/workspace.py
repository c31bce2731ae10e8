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
import shutil
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

import aiofiles  # type: ignore[import-untyped]
from loguru import logger

from coreason_tsbox.config import SandboxConfig
from coreason_tsbox.exceptions import FilesystemError

SOURCE_FILE = "code.ts"
TEST_FILE = "code.test.ts"
COMPILED_FILE = "code.js"
MODULES_DIR = "node_modules"
MANIFEST_FILE = "package.json"
TSCONFIG_FILE = "tsconfig.json"
JEST_CONFIG_FILE = "jest.config.js"


class SessionState(str, Enum):
    CREATED = "created"
    ARTIFACTS_WRITTEN = "artifacts_written"
    DEPENDENCIES_RESOLVED = "dependencies_resolved"
    BUILT = "built"
    TESTED = "tested"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.SUCCEEDED, SessionState.FAILED)


class LinkMode(str, Enum):
    """How the shared dependency directory is attached to a workspace."""

    LINKED = "linked"
    PARTIAL = "partial"
    NONE = "none"


@dataclass
class Session:
    session_id: str
    path: Path
    created_at: float = field(default_factory=time.time)
    state: SessionState = SessionState.CREATED
    failed_stage: SessionState | None = None
    failure_reason: str | None = None
    destroyed: bool = False

    @property
    def source_path(self) -> Path:
        return self.path / SOURCE_FILE

    @property
    def test_path(self) -> Path:
        return self.path / TEST_FILE

    @property
    def compiled_path(self) -> Path:
        return self.path / COMPILED_FILE

    @property
    def modules_path(self) -> Path:
        return self.path / MODULES_DIR

    @property
    def manifest_path(self) -> Path:
        return self.path / MANIFEST_FILE

    @property
    def tsconfig_path(self) -> Path:
        return self.path / TSCONFIG_FILE


def _remove_entry(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


class WorkspaceManager:
    """Creates, populates and tears down per-request workspaces.

    Every session owns one directory under ``config.temp_root``. The shared
    dependency directory is only ever linked into a workspace, never written to.
    """

    def __init__(self, config: SandboxConfig | None = None):
        self.config = config or SandboxConfig()

    def ensure_root(self) -> Path:
        """Create the temp root if it does not exist yet."""
        root = self.config.temp_root
        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Cannot create temp root {root}: {e}") from e
        return root

    def create(self) -> Session:
        """Allocate a fresh session and its empty workspace directory.

        Raises:
            FilesystemError: If the temp root or the session directory cannot be created.
        """
        root = self.ensure_root()
        session_id = str(uuid4())
        path = root / session_id
        try:
            path.mkdir()
        except OSError as e:
            raise FilesystemError(f"Cannot create workspace {path}: {e}") from e

        logger.info(f"[{session_id}] Created workspace {path}")
        return Session(session_id=session_id, path=path)

    async def write_artifacts(self, session: Session, source_code: str, test_code: str) -> tuple[Path, Path]:
        """Write the source fragment and its test fragment into the workspace."""
        async with aiofiles.open(session.source_path, "w", encoding="utf-8") as f:
            await f.write(source_code)
        async with aiofiles.open(session.test_path, "w", encoding="utf-8") as f:
            await f.write(test_code)
        return session.source_path, session.test_path

    async def write_config_files(self, session: Session, ts_config: dict[str, Any] | None = None) -> None:
        """Write jest.config.js, package.json and tsconfig.json.

        Compiler options from ``ts_config`` are layered over the configured
        defaults.
        """
        async with aiofiles.open(session.path / JEST_CONFIG_FILE, "w", encoding="utf-8") as f:
            await f.write(self.config.jest_config)

        manifest = {
            "name": "ts-test-sandbox",
            "version": "1.0.0",
            "description": "TypeScript test sandbox",
            "scripts": {"test": "jest"},
            "dependencies": {},
        }
        async with aiofiles.open(session.manifest_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(manifest, indent=2))

        compiler_options = dict(self.config.compiler_options)
        extra: dict[str, Any] = {}
        if ts_config:
            extra = {k: v for k, v in ts_config.items() if k != "compilerOptions"}
            compiler_options.update(ts_config.get("compilerOptions") or {})
        async with aiofiles.open(session.tsconfig_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps({**extra, "compilerOptions": compiler_options}, indent=2))

    def link_shared_dependencies(self, session: Session) -> LinkMode:
        """Attach the shared dependency directory to the workspace.

        Falls back to a real directory holding links to the critical modules
        only, and finally to no dependencies at all. Never raises.
        """
        target = session.modules_path
        shared = self.config.shared_modules_path

        if target.exists() or target.is_symlink():
            try:
                _remove_entry(target)
            except OSError as e:
                logger.error(f"[{session.session_id}] Cannot remove existing {MODULES_DIR}: {e}")

        try:
            target.symlink_to(shared, target_is_directory=True)
            if not target.exists():
                raise FilesystemError(f"Dangling link {target} -> {shared}")
        except (OSError, FilesystemError) as e:
            logger.error(f"[{session.session_id}] Linking shared dependencies failed: {e}")
            if target.is_symlink():
                target.unlink(missing_ok=True)
        else:
            missing = [m for m in self.config.critical_modules if not (target / m).exists()]
            if missing:
                logger.warning(f"[{session.session_id}] Critical modules not reachable: {', '.join(missing)}")
            return LinkMode.LINKED

        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"[{session.session_id}] Cannot create {MODULES_DIR} directory: {e}")
            return LinkMode.NONE

        self.link_modules(session, self.config.critical_modules)
        return LinkMode.PARTIAL

    def detach_shared_dependencies(self, session: Session) -> None:
        """Swap a shared-directory link for a real directory of module links.

        Lets a package manager write into the workspace without touching the
        shared directory.
        """
        target = session.modules_path
        if not target.is_symlink():
            return
        target.unlink()
        target.mkdir()
        self.link_modules(session, self.config.critical_modules)

    def link_modules(self, session: Session, names: list[str]) -> list[str]:
        """Link each named module from the shared directory if it is missing.

        Returns:
            list[str]: The modules that were linked.
        """
        linked: list[str] = []
        for name in names:
            src = self.config.shared_modules_path / name
            dest = session.modules_path / name
            if dest.exists() or dest.is_symlink() or not src.exists():
                continue
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                dest.symlink_to(src, target_is_directory=True)
                linked.append(name)
            except OSError as e:
                logger.error(f"[{session.session_id}] Linking module {name} failed: {e}")
        if linked:
            logger.info(f"[{session.session_id}] Linked shared modules: {', '.join(linked)}")
        return linked

    def destroy(self, session: Session) -> None:
        """Remove the workspace. Best effort; never raises.

        A dependency link is unlinked first so the shared directory's
        contents are left alone.
        """
        if session.destroyed:
            return
        session.destroyed = True

        try:
            if session.modules_path.is_symlink():
                session.modules_path.unlink()
        except OSError as e:
            logger.error(f"[{session.session_id}] Removing dependency link failed: {e}")

        try:
            shutil.rmtree(session.path)
            logger.info(f"[{session.session_id}] Removed workspace {session.path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"[{session.session_id}] Removing workspace failed: {e}")

    def cleanup_all(self) -> int:
        """Remove every entry under the temp root.

        Returns:
            int: Number of entries removed.
        """
        root = self.config.temp_root
        if not root.exists():
            logger.info(f"Temp root {root} does not exist")
            return 0

        removed = 0
        for entry in root.iterdir():
            try:
                if entry.is_dir() and not entry.is_symlink():
                    modules = entry / MODULES_DIR
                    if modules.is_symlink():
                        modules.unlink()
                _remove_entry(entry)
                removed += 1
            except OSError as e:
                logger.error(f"Cleaning {entry} failed: {e}")
        logger.info(f"Cleaned {removed} entries from {root}")
        return removed
