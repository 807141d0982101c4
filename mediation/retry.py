from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar, Union

from loguru import logger


T = TypeVar("T")


class MediationError(Exception):
    """Base error for the mediation engine."""


class RemoteCallFailed(MediationError):
    """A remote call failed with an error that is not a MediationError."""


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    error: Exception
    retryable: bool = False


Outcome = Union[Ok[T], Failure]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 1.0
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def delay_before_retry(self, retry: int) -> float:
        """Delay in seconds before 1-indexed retry ``retry`` (1s, 2s, 4s, ...)."""
        return self.initial_delay * (2 ** (retry - 1))


def retry_policy_from_env() -> RetryPolicy:
    try:
        attempts = int(os.getenv("MEDIATION_MAX_ATTEMPTS", "3"))
    except ValueError:
        attempts = 3
    return RetryPolicy(max_attempts=attempts)


async def with_retry(operation: Callable[[], Awaitable[Outcome[T]]], policy: RetryPolicy | None = None) -> T:
    """Run ``operation`` until it returns Ok, retrying only retryable failures.

    The first attempt runs immediately. A non-retryable failure, or the last
    failure once ``policy.max_attempts`` is used up, is raised. MediationErrors
    are raised as-is; anything else is wrapped in RemoteCallFailed.
    """
    policy = policy or RetryPolicy()
    attempts = max(1, int(policy.max_attempts))
    n = 1
    while True:
        result = await operation()
        if isinstance(result, Ok):
            return result.value
        if not result.retryable or n >= attempts:
            if isinstance(result.error, MediationError):
                raise result.error
            raise RemoteCallFailed(str(result.error) or type(result.error).__name__) from result.error
        wait = policy.delay_before_retry(n)
        logger.warning(f"retry_backoff | retry in {wait:.1f}s ({n}/{attempts}) | {result.error}")
        await policy.sleep(wait)
        n += 1


async def attempt(call: Callable[[], Awaitable[T]], classify: Callable[[Exception], bool]) -> Outcome[T]:
    """Adapt an exception-raising coroutine into an Ok/Failure result."""
    try:
        return Ok(await call())
    except Exception as e:
        return Failure(e, retryable=classify(e))
