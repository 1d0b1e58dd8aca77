"""
Bounded-concurrency runner for per-user work.
A failing task is recorded and logged; it never cancels its siblings.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class TaskResult:
    """Result of a queued task."""

    def __init__(
        self,
        task_id: str,
        success: bool,
        result: Any = None,
        error: Optional[str] = None,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None
    ):
        self.task_id = task_id
        self.success = success
        self.result = result
        self.error = error
        self.started_at = started_at
        self.completed_at = completed_at
        self.duration = None
        if started_at and completed_at:
            self.duration = (completed_at - started_at).total_seconds()


class TaskQueue:
    def __init__(self, max_concurrency: int = 5):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: Dict[str, asyncio.Task] = {}
        self._task_counter = 0

    def _generate_task_id(self) -> str:
        self._task_counter += 1
        return f"task_{self._task_counter}"

    def submit(
        self,
        coro_fn: Callable[..., Awaitable[Any]],
        *args,
        task_id: Optional[str] = None,
        **kwargs
    ) -> str:
        """Schedule coro_fn(*args, **kwargs). Returns the task ID immediately."""
        task_id = task_id or self._generate_task_id()

        async def wrapped_task() -> TaskResult:
            async with self._semaphore:
                started_at = datetime.now(timezone.utc)
                try:
                    result = await coro_fn(*args, **kwargs)
                except Exception as e:
                    logger.exception(f"Task {task_id} failed: {e}")
                    return TaskResult(
                        task_id=task_id,
                        success=False,
                        error=str(e),
                        started_at=started_at,
                        completed_at=datetime.now(timezone.utc)
                    )
                return TaskResult(
                    task_id=task_id,
                    success=True,
                    result=result,
                    started_at=started_at,
                    completed_at=datetime.now(timezone.utc)
                )

        self._tasks[task_id] = asyncio.create_task(wrapped_task())
        return task_id

    async def join(self) -> List[TaskResult]:
        """Wait for every submitted task; results keep submission order."""
        results = await asyncio.gather(*self._tasks.values())
        self._tasks.clear()
        return list(results)
