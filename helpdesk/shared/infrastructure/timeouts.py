"""
External Call Timeouts
======================

Every call that leaves the process (LLM, embeddings, moderation, vector
store) is bounded. A timeout fails the step like any other provider error.
"""

import asyncio
from typing import Awaitable, TypeVar

from helpdesk.core import ExternalServiceException

T = TypeVar("T")


async def call_with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: float,
    service_name: str
) -> T:
    """
    Await ``awaitable`` for at most ``timeout_seconds``.

    Raises:
        ExternalServiceException: retryable, when the deadline passes
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        raise ExternalServiceException(
            service_name,
            f"timed out after {timeout_seconds:g}s",
            details={"timeout_seconds": timeout_seconds},
            retryable=True
        ) from e
