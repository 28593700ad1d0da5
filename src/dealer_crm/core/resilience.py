# src/dealer_crm/core/resilience.py

"""
Small async helpers layered over any remote call.

None of them cancel work: a timed-out operation keeps running in the background,
we only stop waiting for it.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar, cast

from .errors import OperationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 1.0
DEFAULT_CONCURRENCY = 4
DEFAULT_BATCH_DELAY_SECONDS = 0.3


async def delay(seconds: float) -> None:
    await asyncio.sleep(max(0.0, float(seconds)))


async def with_timeout(op: Awaitable[T], timeout_seconds: float, operation_name: str = "Operation") -> T:
    """
    Race `op` against a timer.

    On expiry raises OperationTimeoutError naming the operation and the duration.
    The underlying future is left running (asyncio.wait does not cancel it).
    """
    fut = asyncio.ensure_future(op)
    done, _pending = await asyncio.wait({fut}, timeout=float(timeout_seconds))
    if fut not in done:
        logger.warning("%s timed out after %ss", operation_name, timeout_seconds)
        raise OperationTimeoutError(operation_name, float(timeout_seconds))
    return fut.result()


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    operation_name: str = "Operation",
    should_retry: Callable[[BaseException], bool] | None = None,
) -> T:
    """
    Call `fn` until it succeeds.

    Delay before attempt n+1 is backoff_seconds * 2 ** (n - 1).
    Stops early when should_retry(error) is False; the last error is re-raised.
    """
    attempts = max(1, int(max_attempts))
    attempt = 1

    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= attempts or (should_retry is not None and not should_retry(e)):
                raise

            wait_s = float(backoff_seconds) * (2 ** (attempt - 1))
            logger.warning(
                "[%s] attempt %d/%d failed, retrying in %.3fs: %r",
                operation_name,
                attempt,
                attempts,
                wait_s,
                e,
            )
            await delay(wait_s)
            attempt += 1


def _takes_index(fn: Callable[..., Any]) -> bool:
    try:
        params = list(inspect.signature(fn).parameters.values())
    except (TypeError, ValueError):
        return True
    if any(p.kind == inspect.Parameter.VAR_POSITIONAL for p in params):
        return True
    positional = [
        p
        for p in params
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    return len(positional) >= 2


async def process_batch(
    items: Sequence[T],
    processor: Callable[..., Awaitable[R] | R],
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
    on_progress: Callable[[int, int], None] | None = None,
) -> list[R]:
    """
    Run `processor` over items in fixed-size chunks.

    The processor is called as processor(item, index) when it takes two
    positional arguments, otherwise as processor(item); it may be sync or async.
    Calls inside a chunk run concurrently, chunks run one after another with
    `delay_seconds` between them (not after the last one). Results keep input order.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be >= 1")

    with_index = _takes_index(processor)

    async def run(item: T, index: int) -> R:
        result = processor(item, index) if with_index else processor(item)
        if inspect.isawaitable(result):
            result = await result
        return cast(R, result)

    total = len(items)
    results: list[R] = []
    completed = 0

    for start in range(0, total, concurrency):
        chunk = items[start : start + concurrency]
        chunk_results = await asyncio.gather(
            *(run(item, start + offset) for offset, item in enumerate(chunk))
        )
        results.extend(chunk_results)

        completed += len(chunk)
        if on_progress is not None:
            on_progress(completed, total)

        if start + concurrency < total:
            await delay(delay_seconds)

    return results


async def call_blocking(
    fn: Callable[..., T],
    *args: Any,
    operation_name: str,
    timeout_seconds: float,
    **kwargs: Any,
) -> T:
    """Run a blocking repository call in a worker thread, bounded by with_timeout."""
    call = functools.partial(fn, *args, **kwargs)
    return await with_timeout(asyncio.to_thread(call), timeout_seconds, operation_name)
