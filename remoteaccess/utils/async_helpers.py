# remoteaccess/utils/async_helpers.py
"""
Async utilities for safe task management.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional, Set

logger = logging.getLogger(__name__)


def create_safe_task(
    coro: Coroutine[Any, Any, Any],
    name: Optional[str] = None,
    log_errors: bool = True,
    on_error: Optional[Callable[[BaseException], None]] = None,
) -> asyncio.Task:
    """
    Create an asyncio task with automatic error handling.

    This prevents fire-and-forget tasks from silently swallowing exceptions.

    Args:
        coro: The coroutine to run as a task
        name: Optional name for the task (for logging)
        log_errors: Whether to log errors (default True)
        on_error: Called with the exception when the task fails

    Returns:
        The created asyncio.Task
    """
    task = asyncio.create_task(coro, name=name)

    def _handle_exception(t: asyncio.Task):
        if t.cancelled():
            return
        exc = t.exception()
        if exc is None:
            return
        if log_errors:
            task_name = name or t.get_name()
            logger.error(f"[AsyncTask:{task_name}] Unhandled exception: {exc}", exc_info=exc)
        if on_error is not None:
            on_error(exc)

    task.add_done_callback(_handle_exception)
    return task


class TaskSupervisor:
    """
    Owns every background task of one server run.

    A failure in any supervised task is logged and reported through on_failure;
    siblings keep running. cancel_all() is the single teardown path used by
    stop(), whatever state the tasks are in.
    """

    def __init__(self, on_failure: Optional[Callable[[BaseException], None]] = None):
        self._tasks: Set[asyncio.Task] = set()
        self._on_failure = on_failure

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        task = create_safe_task(coro, name=name, on_error=self._on_failure)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def __len__(self) -> int:
        return len(self._tasks)

    async def cancel_all(self) -> None:
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
