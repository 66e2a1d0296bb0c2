"""
cloudbase_manager.tier1_runtime.parallel
─────────────────────────────────────────
Bounded-concurrency batch runner for independent async units of work
(file uploads, metadata lookups, grouped deletes).

Semantics:
  - at most ``max_parallel`` tasks in flight
  - tasks start in submission order
  - a failing task never cancels the others
  - ``run()`` returns one outcome per task, in submission order: the task's
    return value or the exception it raised

A fixed pool of asyncio workers drains a shared index iterator, so no
polling is involved.

Usage:
    runner = ParallelTaskRunner(max_parallel=5)
    runner.load_tasks([lambda p=p: upload(p) for p in paths])
    results = await runner.run()
    failed = [r for r in results if isinstance(r, BaseException)]
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from cloudbase_manager.tier0_core.logging import get_logger

log = get_logger(__name__)

DEFAULT_MAX_PARALLEL = 20

Task = Callable[[], Awaitable[Any]]


class ParallelTaskRunner:
    """Run zero-argument coroutine factories with a concurrency ceiling."""

    def __init__(self, max_parallel: int | None = DEFAULT_MAX_PARALLEL) -> None:
        if not max_parallel or max_parallel <= 0:
            max_parallel = DEFAULT_MAX_PARALLEL
        self.max_parallel = max_parallel
        self._tasks: list[Task] = []

    def load_tasks(self, tasks: Iterable[Task]) -> None:
        """Append ``tasks`` after anything already pending."""
        self._tasks.extend(tasks)

    def push(self, task: Task) -> None:
        self._tasks.append(task)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def run(self) -> list[Any]:
        tasks = self._tasks
        self._tasks = []
        results: list[Any] = [None] * len(tasks)
        if not tasks:
            return results

        indices = iter(range(len(tasks)))

        async def worker() -> None:
            # Single event loop: next() on the shared iterator is never interleaved
            for index in indices:
                try:
                    results[index] = await tasks[index]()
                except Exception as exc:
                    results[index] = exc

        workers = min(self.max_parallel, len(tasks))
        await asyncio.gather(*(worker() for _ in range(workers)))

        failures = sum(1 for r in results if isinstance(r, BaseException))
        log.debug(
            "parallel.run.done",
            total=len(tasks),
            failed=failures,
            max_parallel=self.max_parallel,
        )
        return results


__all__ = ["ParallelTaskRunner", "DEFAULT_MAX_PARALLEL"]
