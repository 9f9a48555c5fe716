"""
Bridge a blocking SDK iterator into the event loop.

The vendor SDK iterator is consumed in a daemon thread; items are handed
back through a SimpleQueue read via anyio.to_thread so the loop is never
blocked on a network read.
"""

from __future__ import annotations

import threading
from collections.abc import AsyncIterator, Callable, Iterable
from queue import SimpleQueue
from typing import Any

import anyio

from chatrelay.logging_config import logger


def _close_source(source: Any) -> None:
    close = getattr(source, "close", None)
    if not callable(close):
        return
    try:
        close()
    except Exception as exc:
        # Generators raise ValueError when closed while the worker is inside them.
        logger.debug("closing SDK stream %r failed: %s", type(source).__name__, exc)


async def iterate_in_thread(produce: Callable[[], Iterable[Any]]) -> AsyncIterator[Any]:
    """
    Yield the items of ``produce()`` without blocking the event loop.

    Exceptions raised by the SDK inside the worker are re-raised here
    unchanged so drivers can wrap them in their own error type.

    When the consumer stops early (``aclose()``, cancellation, timeout) the
    worker is told to stop and the SDK stream is closed, which releases the
    upstream connection.
    """
    queue: SimpleQueue[Any] = SimpleQueue()
    sentinel = object()
    stop = threading.Event()
    sources: list[Any] = []

    def _worker() -> None:
        try:
            source = produce()
            sources.append(source)
            for item in source:
                if stop.is_set():
                    break
                queue.put(item)
        except Exception as exc:
            if not stop.is_set():
                queue.put(exc)
        finally:
            if stop.is_set():
                for source in sources:
                    _close_source(source)
            queue.put(sentinel)

    thread = threading.Thread(target=_worker, daemon=True)
    thread.start()

    finished = False
    try:
        while True:
            item = await anyio.to_thread.run_sync(queue.get, abandon_on_cancel=True)
            if item is sentinel:
                finished = True
                break
            if isinstance(item, Exception):
                finished = True
                raise item
            yield item
    finally:
        if not finished:
            stop.set()
            # Unblocks a worker stuck on a network read.
            for source in list(sources):
                _close_source(source)


def response_to_dict(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    for attr in ("model_dump", "to_dict", "dict"):
        fn = getattr(obj, attr, None)
        if callable(fn):
            try:
                return fn()
            except Exception:
                continue
    return {"text": str(obj)}


__all__ = ["iterate_in_thread", "response_to_dict"]
