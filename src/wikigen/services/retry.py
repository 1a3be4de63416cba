"""Retry for LLM answers that arrived but could not be used."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

from wikigen.errors import GenerationError, LLMRequestError

T = TypeVar("T")


async def retry_generation(
    operation: Callable[[], Awaitable[T]],
    attempts: int,
    delay_seconds: float,
    logger: structlog.stdlib.BoundLogger,
    **log_context: Any,
) -> T:
    """Await ``operation`` until it returns or ``attempts`` calls have failed.

    Only unusable answers are retried. LLMRequestError is raised at once since
    the client has already retried the transport. The wait grows linearly with
    the attempt number.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except LLMRequestError:
            raise
        except GenerationError as exc:
            if attempt >= max(attempts, 1):
                raise
            logger.warning(
                "generation_retry",
                attempt=attempt,
                max_attempts=attempts,
                error=str(exc),
                **log_context,
            )
            if delay_seconds > 0:
                await asyncio.sleep(delay_seconds * attempt)
            attempt += 1
