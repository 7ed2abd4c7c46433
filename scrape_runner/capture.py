from __future__ import annotations

import asyncio
import codecs
import logging
from typing import Any, AsyncIterator, TextIO

from scrape_runner.engine import ContainerEngine
from scrape_runner.errors import EngineError, ExecutionError

logger = logging.getLogger(__name__)


async def capture_output(
    engine: ContainerEngine, container: Any, error_sink: TextIO
) -> str:
    """Collect the container's stdout while forwarding its stderr.

    Both channels are attached with history included, so output written before
    the attach completed is still delivered. Returns once stdout reaches end of
    stream.
    """
    try:
        stdout_stream, stderr_stream = await asyncio.gather(
            engine.attach(container, "stdout"),
            engine.attach(container, "stderr"),
        )
    except EngineError as exc:
        logger.error("Error attaching to Docker container streams", exc_info=exc)
        raise ExecutionError(f"Failed to attach to container: {exc}") from exc

    collector = asyncio.create_task(_collect(stdout_stream))
    forwarder = asyncio.create_task(_forward(stderr_stream, error_sink))
    try:
        stdout_text, _ = await asyncio.gather(collector, forwarder)
    except EngineError as exc:
        collector.cancel()
        forwarder.cancel()
        logger.error("Error collecting container logs", exc_info=exc)
        raise ExecutionError(f"Failed to read container output: {exc}") from exc
    return stdout_text


async def _collect(stream: AsyncIterator[bytes]) -> str:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    parts: list[str] = []
    async for chunk in stream:
        parts.append(decoder.decode(chunk))
    parts.append(decoder.decode(b"", final=True))
    return "".join(parts)


async def _forward(stream: AsyncIterator[bytes], sink: TextIO) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    async for chunk in stream:
        sink.write(decoder.decode(chunk))
        sink.flush()
    tail = decoder.decode(b"", final=True)
    if tail:
        sink.write(tail)
        sink.flush()
