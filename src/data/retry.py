"""
Xiyin Bot: Store boundary error handling.

Loads are retried with bounded exponential backoff; writes are not. Either
way, a backend exception that escapes is re-raised as StoreError.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, TypeVar

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.config import settings
from src.ports.store_port import StoreError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def store_errors(*exc_types: type[BaseException]) -> Callable[[F], F]:
    """Re-raise the given backend exceptions as StoreError."""

    def decorator(fn: F) -> F:
        @wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except exc_types as exc:
                raise StoreError(f"{fn.__name__} failed: {exc}") from exc

        return wrapper  # type: ignore[return-value]

    return decorator


def retry_load(*exc_types: type[BaseException]) -> Callable[[F], F]:
    """Retry a load on the given exceptions, then raise StoreError."""

    def decorator(fn: F) -> F:
        retrying = retry(
            stop=stop_after_attempt(max(1, settings.STORE_RETRY_ATTEMPTS)),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
            retry=retry_if_exception_type(exc_types),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )(fn)
        return store_errors(*exc_types)(retrying)

    return decorator
