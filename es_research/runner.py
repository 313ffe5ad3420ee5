"""Bounded-concurrency scheduler for asynchronous analysis tasks."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Deque,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
    Type,
    TypeVar,
)

from .exceptions import CriticalError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class Task(Generic[T]):
    """A unit of work identified by a caller-chosen key."""

    key: str
    func: Callable[[], Awaitable[T]]


@dataclass(slots=True)
class TaskResult(Generic[T]):
    """Discriminated success/failure outcome of one task."""

    key: str
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_message(self) -> str:
        if self.error is None:
            return ""
        return str(self.error) or type(self.error).__name__


async def _invoke(func: Callable[[], Awaitable[T]]) -> T:
    return await func()


class BoundedConcurrencyRunner:
    """Run tasks with at most ``concurrency`` of them outstanding.

    Results come back in completion order. Every submitted task yields exactly
    one :class:`TaskResult`; exceptions raised by a task are captured into its
    result. Exceptions listed in ``fatal_exceptions`` are the only ones that
    escape, after the remaining running tasks have been cancelled.
    """

    def __init__(
        self,
        concurrency: int = 5,
        fatal_exceptions: Tuple[Type[BaseException], ...] = (CriticalError,),
        on_complete: Optional[Callable[[TaskResult[Any]], None]] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.concurrency = concurrency
        self.fatal_exceptions = fatal_exceptions
        self.on_complete = on_complete

    async def run(
        self, tasks: Iterable[Task[T]], concurrency: Optional[int] = None
    ) -> List[TaskResult[T]]:
        """Execute tasks and collect one result per task.

        Args:
            tasks: Tasks to execute
            concurrency: Optional override of the configured ceiling

        Returns:
            Task results in completion order
        """
        limit = self.concurrency if concurrency is None else concurrency
        if limit < 1:
            raise ValueError(f"concurrency must be at least 1, got {limit}")

        pending: Deque[Task[T]] = deque(tasks)
        if not pending:
            return []

        total = len(pending)
        running: Set[asyncio.Future] = set()
        keys: Dict[asyncio.Future, str] = {}
        results: List[TaskResult[T]] = []

        def start_next() -> None:
            while pending and len(running) < limit:
                task = pending.popleft()
                future = asyncio.ensure_future(_invoke(task.func))
                running.add(future)
                keys[future] = task.key

        start_next()
        try:
            while running:
                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                # Bookkeeping for finished futures happens before any new task
                # starts, with no suspension in between.
                for future in done:
                    running.discard(future)
                    key = keys.pop(future)
                    if future.cancelled():
                        error: Optional[BaseException] = asyncio.CancelledError()
                    else:
                        error = future.exception()
                    if error is not None and isinstance(error, self.fatal_exceptions):
                        raise error
                    if error is not None:
                        logger.debug("Task %s failed: %s", key, error)
                        result: TaskResult[T] = TaskResult(key=key, error=error)
                    else:
                        result = TaskResult(key=key, value=future.result())
                    results.append(result)
                    if self.on_complete is not None:
                        self.on_complete(result)
                start_next()
        finally:
            for future in running:
                future.cancel()
            if running:
                await asyncio.gather(*running, return_exceptions=True)

        logger.debug("Runner finished %d/%d tasks", len(results), total)
        return results
