# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""
coreason-tsbox
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .compiler import TypeScriptCompiler, validate_syntax
from .config import SandboxConfig
from .dependencies import DependencyDeclaration, DependencyInstaller
from .executor import ExecutionSandbox
from .models import BuildResult, ExecutionResult
from .pipeline import Pipeline, PipelineAsync
from .runner import JestRunner
from .workspace import Session, WorkspaceManager

__all__ = [
    "BuildResult",
    "DependencyDeclaration",
    "DependencyInstaller",
    "ExecutionResult",
    "ExecutionSandbox",
    "JestRunner",
    "Pipeline",
    "PipelineAsync",
    "SandboxConfig",
    "Session",
    "TypeScriptCompiler",
    "WorkspaceManager",
    "validate_syntax",
]
