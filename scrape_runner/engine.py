"""Container engine access.

The orchestrator only talks to :class:`ContainerEngine`. :class:`DockerEngine`
is the production implementation on top of the ``docker`` SDK, whose calls
block, so every call runs in the loop's default executor and one job waiting
on the daemon never stalls another.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, AsyncIterator, Callable, Iterator, Literal, Protocol, TypeVar

import docker
from docker.errors import APIError, DockerException

from scrape_runner.errors import EngineError, JobCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")
StreamName = Literal["stdout", "stderr"]


class CancelToken:
    """Cooperative cancellation flag checked between engine calls.

    Nothing cancels jobs today; callers that want a timeout can create a token,
    pass it to ``JobOrchestrator.run`` and call :meth:`cancel` later.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelledError("Job was cancelled")


class ContainerEngine(Protocol):
    async def ping(self) -> bool: ...

    async def create_container(
        self, options: dict[str, Any], cancel: CancelToken | None = None
    ) -> Any: ...

    async def start(self, container: Any, cancel: CancelToken | None = None) -> None: ...

    async def attach(
        self, container: Any, stream_name: StreamName
    ) -> AsyncIterator[bytes]: ...

    async def wait(self, container: Any, cancel: CancelToken | None = None) -> int: ...

    def pull_image(self, image: str) -> AsyncIterator[dict[str, Any]]: ...

    def close(self) -> None: ...


class DockerEngine:
    """``ContainerEngine`` backed by one shared ``docker.DockerClient``."""

    def __init__(
        self, base_url: str, client: docker.DockerClient | None = None
    ) -> None:
        self._base_url = base_url
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        # Created on first use; building the client already talks to the daemon.
        if self._client is None:
            self._client = docker.DockerClient(base_url=self._base_url)
        return self._client

    async def ping(self) -> bool:
        return await self._call(lambda: self.client.ping())

    async def create_container(
        self, options: dict[str, Any], cancel: CancelToken | None = None
    ) -> Any:
        client = self.client
        container = await self._call(
            functools.partial(client.containers.create, **options), cancel=cancel
        )
        logger.debug(
            "Docker container created",
            extra={"container_id": container.id[:12], "image": options.get("image")},
        )
        return container

    async def start(self, container: Any, cancel: CancelToken | None = None) -> None:
        await self._call(container.start, cancel=cancel)

    async def attach(
        self, container: Any, stream_name: StreamName
    ) -> AsyncIterator[bytes]:
        want_stdout = stream_name == "stdout"
        chunks = await self._call(
            functools.partial(
                container.attach,
                stdout=want_stdout,
                stderr=not want_stdout,
                stream=True,
                logs=True,
            )
        )
        return self._iterate(chunks)

    async def wait(self, container: Any, cancel: CancelToken | None = None) -> int:
        result = await self._call(container.wait, cancel=cancel)
        return int(result["StatusCode"])

    async def pull_image(self, image: str) -> AsyncIterator[dict[str, Any]]:
        client = self.client
        events = await self._call(
            functools.partial(client.api.pull, image, stream=True, decode=True)
        )
        async for event in self._iterate(events):
            yield event

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    async def _iterate(self, iterator: Iterator[T]) -> AsyncIterator[T]:
        sentinel: Any = object()
        try:
            while True:
                item = await self._call(next, iterator, sentinel)
                if item is sentinel:
                    return
                yield item
        finally:
            close = getattr(iterator, "close", None)
            if close is not None:
                close()

    @staticmethod
    async def _call(
        func: Callable[..., T], *args: Any, cancel: CancelToken | None = None
    ) -> T:
        if cancel is not None:
            cancel.raise_if_cancelled()
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(None, functools.partial(func, *args))
        except APIError as exc:
            raise EngineError(
                str(exc.explanation or exc), status_code=exc.status_code
            ) from exc
        # requests' connection errors are OSError subclasses.
        except (DockerException, OSError) as exc:
            raise EngineError(str(exc)) from exc
        if cancel is not None:
            cancel.raise_if_cancelled()
        return result
