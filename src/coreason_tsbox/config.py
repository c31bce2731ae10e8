# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import tempfile
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JEST_CONFIG = """module.exports = {
  preset: 'ts-jest',
  testEnvironment: 'node',
  testMatch: ['**/*.test.ts'],
  transform: {
    '^.+\\\\.tsx?$': ['ts-jest', {
      tsconfig: {
        allowJs: true,
        esModuleInterop: true,
        module: "commonjs"
      }
    }]
  },
  moduleFileExtensions: ['ts', 'tsx', 'js', 'jsx', 'json', 'node'],
  transformIgnorePatterns: ['/node_modules/(?!(lodash|moment)/)']
};
"""


def _default_compiler_options() -> dict[str, Any]:
    return {
        "target": "es2020",
        "module": "commonjs",
        "esModuleInterop": True,
        "skipLibCheck": True,
    }


class SandboxConfig(BaseSettings):
    """
    Configuration for the TypeScript test sandbox.
    """

    # Filesystem
    temp_root: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()) / "coreason_tsbox")
    shared_modules_path: Path = Field(default_factory=lambda: Path.cwd() / "node_modules")
    cleanup_on_shutdown: bool = True

    # Embedded interpreter
    memory_limit: int = 100 * 1024 * 1024  # 100 MiB
    execution_timeout: float = 20.0

    # External toolchain
    package_install_timeout: float = 60.0
    compile_timeout: float = 60.0
    compiler_options: dict[str, Any] = Field(default_factory=_default_compiler_options)
    jest_config: str = DEFAULT_JEST_CONFIG
    critical_modules: list[str] = ["typescript", "jest", "ts-jest", "lodash", "moment"]
    runner_modules: list[str] = ["ts-jest", "jest", "lodash", "moment"]

    # HTTP
    host: str = "0.0.0.0"
    port: int = 3000
    max_body_bytes: int = 10 * 1024 * 1024

    model_config = SettingsConfigDict(
        env_prefix="COREASON_TSBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
