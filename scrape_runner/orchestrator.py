"""Runs one job: create, start, capture, wait, with a single image-pull retry."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import Any, TextIO

from scrape_runner.capture import capture_output
from scrape_runner.container_spec import container_options
from scrape_runner.engine import CancelToken, ContainerEngine
from scrape_runner.errors import (
    EngineError,
    ExecutionError,
    ImageAbsentError,
    JobCancelledError,
)
from scrape_runner.models import JobConfig, JobResult, JobState
from scrape_runner.settings import Settings

logger = logging.getLogger(__name__)


def is_image_absent(error: EngineError, image: str) -> bool:
    """True when ``error`` is the engine reporting ``image`` as not present."""
    if error.status_code != 404:
        return False
    message = str(error)
    if "no such image" not in message.lower():
        return False
    return image in message or image.rsplit("/", 1)[-1] in message


class JobOrchestrator:
    """Turns a ``JobConfig`` into a finished container run.

    One instance is shared by every request; all per-job state lives in the
    locals of :meth:`run`.
    """

    def __init__(
        self,
        engine: ContainerEngine,
        settings: Settings,
        error_sink: TextIO | None = None,
    ) -> None:
        self.engine = engine
        self.settings = settings
        self.error_sink = error_sink

    async def run(
        self, config: JobConfig, cancel: CancelToken | None = None
    ) -> JobResult:
        pulls_left = self.settings.max_image_pulls
        while True:
            try:
                container = await self._create(config, cancel)
                break
            except ImageAbsentError as exc:
                if pulls_left <= 0:
                    self._transition(JobState.failed, config)
                    raise ExecutionError(
                        f"{exc} (still missing after pulling it)"
                    ) from exc
                pulls_left -= 1
                await self._pull(config)

        self._transition(JobState.starting, config)
        try:
            await self.engine.start(container, cancel=cancel)
        except EngineError as exc:
            self._fail(config, "Error starting Docker container", exc)
            raise ExecutionError(f"Failed to start container: {exc}") from exc

        # Ask for the exit status while the container still exists; auto-remove
        # may delete it as soon as it stops.
        exit_status = asyncio.create_task(self._wait(container, config, cancel))

        self._transition(JobState.capturing, config)
        sink = self.error_sink or sys.stderr
        try:
            output = await capture_output(self.engine, container, sink)
        except ExecutionError:
            exit_status.cancel()
            # The wait may already have failed too; collect it so it is not
            # reported as an unretrieved task exception.
            with contextlib.suppress(ExecutionError, asyncio.CancelledError):
                await exit_status
            self._transition(JobState.failed, config)
            raise

        self._transition(JobState.waiting, config)
        exit_code = await exit_status
        logger.debug("Docker container exited", extra={"status_code": exit_code})
        if exit_code != 0:
            message = f"Job script execution failed with exit code {exit_code}"
            logger.error(message, extra={"host_directory": str(config.host_directory)})
            self._transition(JobState.failed, config)
            raise ExecutionError(message, exit_code=exit_code)

        self._transition(JobState.succeeded, config)
        return JobResult(status="success", output=output)

    async def _create(self, config: JobConfig, cancel: CancelToken | None) -> Any:
        self._transition(JobState.creating, config)
        image = self.settings.runtime_image
        try:
            return await self.engine.create_container(
                container_options(config, self.settings), cancel=cancel
            )
        except JobCancelledError:
            self._transition(JobState.failed, config)
            raise
        except EngineError as exc:
            if is_image_absent(exc, image):
                raise ImageAbsentError(image) from exc
            self._fail(config, "Error creating Docker container", exc)
            raise ExecutionError(f"Failed to create container: {exc}") from exc

    async def _pull(self, config: JobConfig) -> None:
        image = self.settings.runtime_image
        self._transition(JobState.pulling, config)
        logger.info("Image not found locally, pulling from registry", extra={"image": image})
        try:
            async with contextlib.aclosing(self.engine.pull_image(image)) as events:
                async for event in events:
                    if event.get("error"):
                        raise ExecutionError(
                            f"Failed to pull image {image}: {event['error']}"
                        )
                    logger.debug("Docker pull progress", extra={"event": event})
        except EngineError as exc:
            self._fail(config, "Error pulling Docker image", exc)
            raise ExecutionError(f"Failed to pull image {image}: {exc}") from exc
        except ExecutionError as exc:
            self._fail(config, "Error pulling Docker image", exc)
            raise
        logger.info("Docker image pulled", extra={"image": image})

    async def _wait(
        self, container: Any, config: JobConfig, cancel: CancelToken | None
    ) -> int:
        try:
            return await self.engine.wait(container, cancel=cancel)
        except EngineError as exc:
            self._fail(config, "Error waiting for Docker container", exc)
            raise ExecutionError(f"Failed waiting for container: {exc}") from exc

    def _fail(self, config: JobConfig, message: str, exc: Exception) -> None:
        logger.error(
            message,
            exc_info=exc,
            extra={"host_directory": str(config.host_directory)},
        )
        self._transition(JobState.failed, config)

    @staticmethod
    def _transition(state: JobState, config: JobConfig) -> None:
        logger.debug(
            "Job state changed",
            extra={"state": state.value, "host_directory": str(config.host_directory)},
        )
