# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from coreason_tsbox.config import SandboxConfig
from coreason_tsbox.exceptions import InvalidDependencyName, ValidationError
from coreason_tsbox.models import ExecuteRequest, RunTestRequest, ValidateRequest
from coreason_tsbox.pipeline import PipelineAsync
from coreason_tsbox.utils.logger import logger

MISSING_FIELD_MESSAGES = {
    "/run-test": "Please provide both TypeScript code and Jest test code",
    "/execute": "Please provide the JavaScript code to execute",
    "/validate": "Please provide the TypeScript code to validate",
}


def _error(status_code: int, message: str, error: str | None = None, **extra: Any) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "message": message, **extra}
    if error is not None:
        body["error"] = error
    return JSONResponse(status_code=status_code, content=body)


def create_app(config: SandboxConfig | None = None) -> FastAPI:
    """Build the HTTP application around a single pipeline instance."""
    config = config or SandboxConfig()
    pipeline = PipelineAsync(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(f"Starting TypeScript sandbox, workspaces under {config.temp_root}")
        async with pipeline:
            yield
        logger.info("TypeScript sandbox stopped")

    app = FastAPI(title="coreason-tsbox", lifespan=lifespan)
    app.state.pipeline = pipeline

    @app.middleware("http")
    async def limit_body_size(request: Request, call_next: Any) -> Any:
        length = request.headers.get("content-length")
        if length and length.isdigit() and int(length) > config.max_body_bytes:
            return _error(413, "Request body too large")
        return await call_next(request)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        message = MISSING_FIELD_MESSAGES.get(request.url.path, "Invalid request")
        logger.warning(f"Rejected {request.url.path}: {exc.errors()}")
        return _error(400, message, error=str(exc.errors()))

    @app.post("/run-test")
    async def run_test(body: RunTestRequest) -> Any:
        logger.info(f"Test request: code={len(body.ts_code)} chars, test={len(body.test_code)} chars")
        if body.packages:
            logger.info(f"Requested packages: {', '.join(body.packages)}")
        try:
            result = await pipeline.run_test(body)
        except ValidationError as e:
            return _error(400, MISSING_FIELD_MESSAGES["/run-test"], error=str(e))
        except InvalidDependencyName as e:
            return _error(400, "Invalid package name", error=str(e))
        except Exception as e:
            logger.exception(f"Test pipeline error: {e}")
            return _error(500, "Internal server error", error=str(e))

        logger.info(f"Test request finished: {'success' if result.success else 'failure'}")
        return result.model_dump(exclude_none=True)

    @app.post("/execute")
    async def execute(body: ExecuteRequest) -> Any:
        logger.info(f"Execute request: {len(body.code)} chars")
        try:
            result = await pipeline.execute(body)
        except Exception as e:
            logger.exception(f"Execution error: {e}")
            return _error(500, "Internal server error", error=str(e), executionTime=0)

        exclude: set[str] = set()
        if result.error is None:
            exclude.add("error")
        if not result.success:
            exclude.add("result")
        return result.model_dump(by_alias=True, exclude=exclude)

    @app.post("/validate")
    async def validate(body: ValidateRequest) -> Any:
        try:
            report = await pipeline.validate(body)
        except Exception as e:
            logger.exception(f"Validation error: {e}")
            return _error(500, "Internal server error", error=str(e))
        return report.model_dump()

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


app = create_app()


def serve() -> None:
    """Entry point for the HTTP server."""
    config = SandboxConfig()
    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":  # pragma: no cover
    serve()
