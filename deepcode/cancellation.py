"""Cooperative cancellation for in-flight model calls."""

import asyncio
from typing import Any, Awaitable, TypeVar

from deepcode.exceptions import RequestAbortedError

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation signal shared by a session loop and its requests."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Request aborted") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestAbortedError(self.reason or "Request aborted")

    async def wait(self) -> None:
        await self._event.wait()

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        """Cancel task and await it to avoid pending task warnings."""
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            pass

    async def run(self, work: Awaitable[T]) -> T:
        """Await ``work`` unless the token fires first.

        Raises:
            RequestAbortedError if the token is (or becomes) cancelled
        """
        work_task: asyncio.Task[T] = asyncio.ensure_future(work)
        if self._event.is_set():
            await self._cancel_task(work_task)
            self.raise_if_cancelled()

        abort_wait_task = asyncio.create_task(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {work_task, abort_wait_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if work_task in done:
                return work_task.result()
            await self._cancel_task(work_task)
            raise RequestAbortedError(self.reason or "Request aborted")
        except asyncio.CancelledError:
            await self._cancel_task(work_task)
            raise
        finally:
            await self._cancel_task(abort_wait_task)
