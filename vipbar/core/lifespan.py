"""Startup and shutdown sequence for the auth service."""

import asyncio
import logging

from vipbar.core.logging import get_logger, setup_logging
from vipbar.core.state import SecurityState
from vipbar.middleware import (
    rate_limit_cleanup_loop,
    refresh_token_cleanup_loop,
    security_event_prune_loop,
)

_logger = get_logger("lifespan")


def task_done_callback(task: asyncio.Task[None]) -> None:
    """Log unhandled exceptions from background tasks."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _logger.error(f"Background task {task.get_name()} failed: {exc}")


async def startup(logger: logging.Logger, state: SecurityState) -> list[asyncio.Task]:
    """Configure logging, report risky settings and start the sweeps.

    Returns the background tasks, to be cancelled via ``shutdown``.
    """
    settings = state.settings
    setup_logging(
        level=settings.log_level,
        format_type="structured" if not settings.debug else "dev",
    )

    for warning in settings.check_security_configuration():
        logger.warning(f"SECURITY: {warning}")

    tasks: list[asyncio.Task] = []
    for loop in (rate_limit_cleanup_loop, security_event_prune_loop, refresh_token_cleanup_loop):
        task = asyncio.create_task(loop(state), name=loop.__name__)
        task.add_done_callback(task_done_callback)
        tasks.append(task)

    return tasks


async def shutdown(logger: logging.Logger, state: SecurityState, tasks: list[asyncio.Task]) -> None:
    """Cancel the background tasks and release the database pool."""
    for task in tasks:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    await state.close()
    logger.info("Shutdown complete")
