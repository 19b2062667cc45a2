from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from signing_desk.core.errors import ProviderError, ProviderUnavailableError
from signing_desk.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def call_provider(
    call: Callable[[], Awaitable[T]],
    *,
    operation: str,
    provider: str,
    timeout: float,
    attempts: int = 1,
    base_delay: float = 0.5,
) -> T:
    """Run one provider call with a timeout, retrying retryable failures.

    ``call`` is a zero-argument factory so every attempt gets a fresh
    coroutine. With ``attempts=1`` the call is made exactly once. A retryable
    failure that survives every attempt becomes ``ProviderUnavailableError``.
    """
    last_error: ProviderError | None = None
    for attempt in range(attempts):
        try:
            return await asyncio.wait_for(call(), timeout=timeout)
        except asyncio.TimeoutError:
            last_error = ProviderError(
                f"{provider} {operation} timed out after {timeout}s",
                retryable=True,
                provider=provider,
                operation=operation,
            )
        except ProviderError as exc:
            if not exc.retryable:
                raise
            last_error = exc

        logger.warning(
            "provider.call.failed",
            provider=provider,
            operation=operation,
            attempt=attempt + 1,
            attempts=attempts,
            error=last_error.message,
        )
        if attempt < attempts - 1:
            await asyncio.sleep(base_delay * (2 ** attempt))

    raise ProviderUnavailableError(
        f"{provider} {operation} failed after {attempts} attempt(s): {last_error.message}",
        details={"provider": provider, "operation": operation, "attempts": attempts},
    )
