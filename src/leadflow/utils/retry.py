"""Exponential backoff for calls to external APIs."""

import asyncio
import inspect
from typing import Any, Callable, Tuple, Type, TypeVar

from ..logging_utils import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    func: Callable[..., T],
    *args: Any,
    max_retries: int = 3,
    base_delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    **kwargs: Any,
) -> T:
    """Call ``func`` until it succeeds, sleeping ``base_delay * 2**n`` between tries.

    ``func`` may be sync or async. Exceptions outside ``retry_on`` propagate
    at once; after ``max_retries`` retries the last error is re-raised.
    """
    attempts = max_retries + 1
    for attempt in range(1, attempts + 1):
        try:
            result = func(*args, **kwargs)
            return await result if inspect.isawaitable(result) else result
        except retry_on as exc:
            if attempt == attempts:
                logger.error("Giving up after %d attempts: %s", attempts, exc)
                raise
            delay = base_delay * 2 ** (attempt - 1)
            logger.warning(
                "Attempt %d/%d failed (%s); retrying in %.1fs", attempt, attempts, exc, delay
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")
