# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Direct execution of a JavaScript fragment inside an embedded QuickJS interpreter.

Limits are enforced by the interpreter itself: the memory ceiling by its
allocator and the time limit by its interrupt handler, which QuickJS polls
between bytecode steps. Cancellation is therefore cooperative. A fragment
blocked inside a single native operation is not interrupted until that
operation returns.
"""

import asyncio
import json
import time
from typing import Any

import quickjs
from loguru import logger

from coreason_tsbox.config import SandboxConfig
from coreason_tsbox.exceptions import SandboxFault
from coreason_tsbox.models import ExecuteOptions, ExecutionResult


def _materialize(value: Any) -> Any:
    """Convert an interpreter value into plain Python data.

    Values JSON cannot represent, such as functions, become ``None`` like ``undefined``.
    """
    if isinstance(value, quickjs.Object):
        serialized = value.json()
        if serialized is None:
            return None
        return json.loads(serialized)
    return value


class ExecutionSandbox:
    """Evaluates code in a fresh interpreter per call, independent of any workspace."""

    def __init__(self, config: SandboxConfig | None = None):
        self.config = config or SandboxConfig()

    def _new_context(self, memory_limit: int, time_limit: float) -> quickjs.Context:
        try:
            context = quickjs.Context()
            context.set_memory_limit(memory_limit)
            context.set_time_limit(time_limit)
        except Exception as e:
            raise SandboxFault(f"Cannot start interpreter: {e}") from e
        return context

    def _define_globals(self, context: quickjs.Context, globals_: dict[str, Any]) -> None:
        for name, value in globals_.items():
            payload = json.dumps(json.dumps(value))
            context.eval(f"globalThis[{json.dumps(name)}] = JSON.parse({payload});")

    def _evaluate(self, code: str, memory_limit: int, time_limit: float, globals_: dict[str, Any]) -> ExecutionResult:
        start = time.perf_counter()

        def elapsed() -> int:
            return int((time.perf_counter() - start) * 1000)

        context: quickjs.Context | None = None
        try:
            context = self._new_context(memory_limit, time_limit)
            if globals_:
                self._define_globals(context, globals_)
            value = _materialize(context.eval(code))
            return ExecutionResult.ok(value, elapsed())
        except quickjs.JSException as e:
            return ExecutionResult.err(str(e), elapsed())
        except SandboxFault as e:
            logger.error(f"Interpreter fault: {e}")
            return ExecutionResult.err(str(e), elapsed())
        except MemoryError as e:
            logger.error(f"Interpreter exceeded its memory ceiling: {e}")
            return ExecutionResult.err(f"Memory limit of {memory_limit} bytes exceeded", elapsed())
        except Exception as e:
            logger.exception(f"Interpreter fault: {e}")
            return ExecutionResult.err(f"Interpreter fault: {e!r}", elapsed())
        finally:
            # Release the runtime before returning so memory is bounded to one evaluation.
            del context

    async def execute(self, code: str, options: ExecuteOptions | None = None) -> ExecutionResult:
        """Evaluate ``code`` under a memory ceiling and a cooperative time limit.

        Args:
            code: JavaScript source. The value of its last expression is returned.
            options: Optional memory (bytes), timeout (milliseconds) and globals.

        Returns:
            ExecutionResult: ``ok`` with the materialised value, or ``error`` with
            the script's exception text.
        """
        options = options or ExecuteOptions()
        memory_limit = options.memory or self.config.memory_limit
        time_limit = options.timeout / 1000 if options.timeout else self.config.execution_timeout

        logger.info(f"Executing {len(code)} chars in QuickJS (memory={memory_limit}, timeout={time_limit}s)")
        result = await asyncio.to_thread(self._evaluate, code, memory_limit, time_limit, options.context or {})
        logger.info(f"Execution finished: {result.status} in {result.elapsed_ms}ms")
        return result
