from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, TextIO

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from scrape_runner.config import scripts_base_dir
from scrape_runner.container_spec import build_job_config
from scrape_runner.engine import ContainerEngine, DockerEngine
from scrape_runner.errors import EngineError, InfrastructureError, JobValidationError
from scrape_runner.models import ErrorResponse, JobConfig, JobRequest
from scrape_runner.orchestrator import JobOrchestrator
from scrape_runner.sandbox import is_within_base, validate_job_params
from scrape_runner.settings import Settings, get_settings

logger = logging.getLogger(__name__)

API_DESCRIPTION = """
On-demand scrape job runner - run a job directory in a throwaway container.

## Job directory layout

`programDirectory` is resolved relative to `APP_PATH_FOR_SCRIPTS` and must stay
inside it. The directory is mounted read-only into the Puppeteer runtime image,
copied to a scratch working directory, and run with:

```sh
npm ci && node app.mjs
```

Whatever `app.mjs` prints to stdout is returned as the response body; stderr is
forwarded to the service's own stderr. A non-zero exit code fails the request.
"""


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=ErrorResponse(message=message).model_dump()
    )


def _prepare_job(params: Any, base_dir: Path, settings: Settings) -> JobConfig:
    error = validate_job_params(params, base_dir)
    if error is not None:
        raise JobValidationError(error)
    job_request = JobRequest.model_validate(params)
    try:
        config = build_job_config(job_request, base_dir, settings)
    except OSError as exc:
        raise JobValidationError("Error: Invalid program directory") from exc
    # The directory may have changed since it was checked; the mounted path
    # itself must be inside the base.
    if not is_within_base(str(config.host_directory), base_dir):
        raise JobValidationError("Error: Invalid program directory")
    return config


def create_app(
    settings: Settings | None = None,
    engine: ContainerEngine | None = None,
    error_sink: TextIO | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    engine = engine or DockerEngine(settings.docker_url)
    orchestrator = JobOrchestrator(engine, settings, error_sink=error_sink)
    base_dir = scripts_base_dir(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            await engine.ping()
        except EngineError as exc:
            logger.error("Docker ping error", exc_info=exc)
            # Failing startup makes uvicorn exit before serving any request.
            raise InfrastructureError(f"Container engine unreachable: {exc}") from exc
        logger.info("Connected to Docker")
        logger.info("Server is running", extra={"port": settings.port})
        try:
            yield
        finally:
            engine.close()

    app = FastAPI(
        title="Scrape Job Runner",
        version="0.1.0",
        description=API_DESCRIPTION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "request completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": round((time.perf_counter() - started) * 1000, 1),
            },
        )
        return response

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/start-scrapper-job")
    async def start_scrapper_job(request: Request) -> JSONResponse:
        try:
            params = await request.json()
        except ValueError:
            params = None
        logger.info("Received HTTP request", extra={"params": params})

        try:
            config = _prepare_job(params, base_dir, settings)
        except JobValidationError as exc:
            logger.warning("Validation failed", extra={"error": str(exc)})
            return _error_response(400, str(exc))

        try:
            result = await orchestrator.run(config)
        except Exception as exc:
            logger.error(
                "Failed to execute Docker command",
                exc_info=exc,
                extra={"params": params},
            )
            return _error_response(500, f"Job script execution failed: {exc}")

        logger.info("Scrapper job completed successfully")
        return JSONResponse(content=result.output)

    return app


app = create_app()
