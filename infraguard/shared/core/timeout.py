"""
Operation deadlines for infraguard.

Bounds store and cloud API calls so a stuck backend cannot hang a sync pass.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

import structlog

from infraguard.shared.core.config import get_settings
from infraguard.shared.core.exceptions import OperationCancelledError

logger = structlog.get_logger()

T = TypeVar("T")


def default_timeout(operation_type: str) -> float | None:
    """Resolve the configured deadline for an operation family."""
    settings = get_settings()
    if operation_type == "cloud_api":
        return settings.CLOUD_API_TIMEOUT_SECONDS
    return settings.STORE_OPERATION_TIMEOUT_SECONDS


class TimeoutManager:
    """Manages deadlines for I/O bound operations."""

    def __init__(self, operation_type: str = "store", timeout: float | None = None):
        self.operation_type = operation_type
        self.timeout = timeout

    async def execute_with_timeout(
        self,
        coro: Callable[..., Awaitable[T]],
        *args: Any,
        context: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> T:
        """Execute a coroutine, converting an expired deadline into OperationCancelledError."""
        start_time = time.perf_counter()
        context = context or {}

        try:
            return await asyncio.wait_for(coro(*args, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            execution_time = round(time.perf_counter() - start_time, 3)
            logger.warning(
                "operation_timed_out",
                operation_type=self.operation_type,
                execution_time_seconds=execution_time,
                timeout_seconds=self.timeout,
                **context,
            )
            raise OperationCancelledError(
                f"Operation timed out after {self.timeout} seconds",
                details={
                    "operation_type": self.operation_type,
                    "timeout_seconds": self.timeout,
                    "execution_time_seconds": execution_time,
                    **context,
                },
            ) from exc


def timeout_operation(
    operation_type: str = "store",
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator applying the configured deadline for `operation_type`.

    Usage:
        @timeout_operation("cloud_api")
        async def list_subscriptions():
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            manager = TimeoutManager(operation_type, default_timeout(operation_type))
            return await manager.execute_with_timeout(
                func, *args, context={"operation": func.__name__}, **kwargs
            )

        return wrapper

    return decorator
