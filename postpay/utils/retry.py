from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Awaitable, Callable

from ..constants import DEFAULT_BASE_DELAY_MS, DEFAULT_MAX_ATTEMPTS
from ..contracts import StepOperationError
from ..persistence.models import StepFailure, StepOutcome, StepSuccess

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def compute_backoff(attempt: int, base_delay_ms: float = DEFAULT_BASE_DELAY_MS) -> float:
    """Compute the delay in seconds after failed ``attempt`` (pure exponential)."""
    return max(base_delay_ms, 0) * 2 ** (attempt - 1) / 1000


def _describe(exc: Exception) -> Any:
    if isinstance(exc, StepOperationError):
        return exc.details()
    return str(exc) or exc.__class__.__name__


async def execute_with_retry(
    operation: Callable[..., Awaitable[Any]],
    *args: Any,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
    sleep: Sleep = asyncio.sleep,
) -> StepOutcome:
    """Run ``operation(*args)`` with exponential backoff between attempts.

    An attempt fails when the operation raises or returns a mapping with
    ``ok`` set to ``False``. After a failed attempt N the wrapper waits
    ``base_delay_ms * 2**(N-1)`` milliseconds before the next one. At least one
    attempt is always made: ``max_attempts`` below 1 is treated as 1.

    Returns:
        ``StepSuccess`` with the attempt number and result on the first
        success, otherwise ``StepFailure`` with the last error.
    """

    if max_attempts < 1:
        logger.warning(f"max_attempts={max_attempts} is invalid, making a single attempt")
        max_attempts = 1

    error: Any = None
    for attempt in range(1, max_attempts + 1):
        try:
            result = await operation(*args)
        except Exception as exc:
            error = _describe(exc)
        else:
            if isinstance(result, Mapping) and result.get("ok") is False:
                error = dict(result)
            else:
                return StepSuccess(attempt=attempt, result=result)

        if attempt < max_attempts:
            delay = compute_backoff(attempt, base_delay_ms)
            logger.warning(
                f"Step failed attempt {attempt}/{max_attempts}, retrying in {delay:.3f}s: {error}"
            )
            await sleep(delay)

    return StepFailure(attempt=max_attempts, error=error)
