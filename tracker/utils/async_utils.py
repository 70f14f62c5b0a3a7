"""Utilities for handling async operations in Celery tasks."""

import asyncio


def run_async(coro):
    """
    Run an async coroutine from a synchronous Celery task.

    Each call gets a fresh event loop, so coroutines that touch the
    database must dispose the engine before returning; pooled connections
    are bound to the loop that opened them.

    Args:
        coro: The coroutine to run

    Returns:
        The result of the coroutine
    """
    return asyncio.run(coro)
