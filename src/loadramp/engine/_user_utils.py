"""Virtual user task bookkeeping shared by the orchestrator."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loadramp._internal.logging import get_logger

if TYPE_CHECKING:
    from loadramp.engine.virtual_user import VirtualUser

logger = get_logger("engine.user_utils")

# Seconds to wait for cancelled tasks to unwind.
CANCEL_TIMEOUT = 2.0

UserTask = tuple["VirtualUser", "asyncio.Task[None]"]


async def retire_users(user_tasks: list[UserTask], graceful_timeout: float) -> int:
    """Retire the given users and wait for them to stop.

    Each user is asked to stop before its next step. Users still running
    after *graceful_timeout* seconds are cancelled.

    Args:
        user_tasks: (user, task) pairs to stop. Not modified.
        graceful_timeout: Seconds to wait before cancelling stragglers.

    Returns:
        Number of tasks that had to be cancelled.
    """
    if not user_tasks:
        return 0

    for user, _task in user_tasks:
        user.retire()

    tasks = [t for _, t in user_tasks]
    _done, pending = await asyncio.wait(tasks, timeout=graceful_timeout)

    for task in pending:
        task.cancel()

    if pending:
        logger.warning(
            "%d virtual user(s) did not stop within %.1fs; cancelled",
            len(pending),
            graceful_timeout,
        )
        await asyncio.wait(pending, timeout=CANCEL_TIMEOUT)

    return len(pending)


async def shutdown_all_users(user_tasks: list[UserTask], graceful_timeout: float) -> None:
    """Stop every virtual user and clear *user_tasks*."""
    await retire_users(user_tasks, graceful_timeout)
    user_tasks.clear()
    logger.debug("All virtual users shut down")
