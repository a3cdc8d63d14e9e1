# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import time
import functools
from dataclasses import dataclass
from typing import Callable, TypeVar

from gpinstall.errors import AuthenticationError, ConnectivityError, InstallerError

T = TypeVar("T")


class RetryError(InstallerError):
    """Raised when every attempt failed. ``__cause__`` is the last failure."""

    def __init__(self, message: str, attempts: int):
        self.attempts = attempts
        super().__init__(message)

    @property
    def category(self) -> str:  # type: ignore[override]
        return getattr(self.__cause__, "category", "error")


def retry(
    *,
    retries: int,
    delay: float,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    give_up_on: tuple[type[Exception], ...] = (),
    on_retry: Callable[[int, Exception], None] | None = None,
):
    """
    Retry decorator for idempotent operations.

    retries: number of attempts
    delay: seconds between attempts
    retry_on: exception types to retry; anything else propagates at once
    give_up_on: subclasses of retry_on that propagate at once
    on_retry: callback(attempt, exception)
    """

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            last_exc = None
            for attempt in range(1, retries + 1):
                try:
                    return fn(*args, **kwargs)
                except give_up_on:
                    raise
                except retry_on as exc:
                    last_exc = exc
                    if on_retry:
                        on_retry(attempt, exc)
                    if attempt == retries:
                        break
                    time.sleep(delay)
            raise RetryError(
                f"{fn.__name__} failed after {retries} attempts: {last_exc}",
                attempts=retries,
            ) from last_exc
        return wrapper
    return decorator


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded attempts with a fixed delay.

    Only transport failures are retried by default; a command that ran and
    exited non-zero is retried only when the caller passes it in ``retry_on``.
    A rejected credential is never retried.
    """

    max_attempts: int = 3
    delay: float = 5.0

    def call(
        self,
        fn: Callable[[], T],
        *,
        retry_on: tuple[type[Exception], ...] = (ConnectivityError,),
        give_up_on: tuple[type[Exception], ...] = (AuthenticationError,),
        on_retry: Callable[[int, Exception], None] | None = None,
    ) -> T:
        wrapped = retry(
            retries=max(1, self.max_attempts),
            delay=self.delay,
            retry_on=retry_on,
            give_up_on=give_up_on,
            on_retry=on_retry,
        )(fn)
        return wrapped()
