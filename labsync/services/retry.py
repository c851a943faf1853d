"""Bounded retry with pure exponential backoff and cooperative cancellation."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from labsync.utils.errors import ChunkTransmissionError, UploadCancelled

logger = logging.getLogger("labsync")

T = TypeVar("T")


class CancelToken:
    """Abort signal checked before every network call and every backoff delay."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise UploadCancelled()

    async def sleep(self, seconds: float) -> None:
        """Wait ``seconds`` unless cancelled first; cancellation raises at once."""
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise UploadCancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Run ``awaitable`` and abandon it as soon as the token fires."""
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task in done:
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise UploadCancelled()


def _should_retry(exc: BaseException, retry_if: Optional[Callable[[BaseException], bool]]) -> bool:
    if not isinstance(exc, Exception):
        return False
    if isinstance(exc, UploadCancelled):
        return False
    if isinstance(exc, ChunkTransmissionError) and not exc.retryable:
        return False
    if retry_if is not None:
        return bool(retry_if(exc))
    return True


def _log_before_sleep(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning({
        "function": "retry",
        "status": "backoff",
        "attempt": retry_state.attempt_number,
        "delay_s": retry_state.next_action.sleep if retry_state.next_action else None,
        "error": str(exc) if exc else None,
    })


async def execute(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    *,
    cancel: Optional[CancelToken] = None,
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    retry_if: Optional[Callable[[BaseException], bool]] = None,
) -> T:
    """Run ``operation`` up to ``max_attempts`` times.

    Attempt n (1-based) that fails is followed by a delay of
    ``base_delay * 2 ** (n - 1)`` before attempt n + 1. When attempts run out
    the last error is raised unchanged. A fired ``cancel`` token stops the
    loop with ``UploadCancelled`` before the next attempt or during a delay.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    async def _sleep(seconds: float) -> None:
        if cancel is None:
            await (sleep or asyncio.sleep)(seconds)
            return
        if sleep is None:
            await cancel.sleep(seconds)
            return
        cancel.raise_if_cancelled()
        await sleep(seconds)
        cancel.raise_if_cancelled()

    async def _attempt() -> T:
        if cancel is None:
            return await operation()
        # no coroutine is created once the token has fired
        cancel.raise_if_cancelled()
        return await cancel.guard(operation())

    retryer = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=base_delay, exp_base=2, min=0),
        retry=retry_if_exception(lambda exc: _should_retry(exc, retry_if)),
        sleep=_sleep,
        before_sleep=_log_before_sleep,
        reraise=True,
    )
    return await retryer(_attempt)


__all__ = ["CancelToken", "execute"]
