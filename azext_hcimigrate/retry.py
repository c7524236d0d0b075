"""Bounded fixed-delay retry for transient control-plane failures."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from azext_hcimigrate.errors import MigrateError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Error messages the service emits for conditions that clear on their own.
DEFAULT_RETRYABLE_PATTERNS = (
    r".*timeout while waiting.*",
    r".*too many requests.*",
    r".*please retry.*",
)


@dataclass
class RetryPolicy:
    """How many times to retry and how long to wait between attempts."""

    max_retries: int = 3
    delay_seconds: float = 5.0
    patterns: tuple[str, ...] = DEFAULT_RETRYABLE_PATTERNS
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @classmethod
    def from_config(cls, config) -> RetryPolicy:
        """Build from the ``retry`` section of a :class:`MigrateConfig`."""
        return cls(
            max_retries=int(config.get("retry.max_retries", 3)),
            delay_seconds=float(config.get("retry.delay_seconds", 5)),
        )

    def is_retryable(self, exc: Exception) -> bool:
        if isinstance(exc, TransientError):
            return True
        message = str(exc)
        return any(re.match(p, message, re.IGNORECASE | re.DOTALL) for p in self.patterns)


def call_with_retry(func: Callable[[], T], policy: RetryPolicy | None = None, description: str = "") -> T:
    """Call *func*, retrying retryable failures up to ``policy.max_retries`` times.

    Non-retryable errors propagate immediately.  After the last attempt the
    final error is re-raised as :class:`TransientError` so callers see a
    consistent type.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return func()
        except MigrateError as exc:
            if not policy.is_retryable(exc):
                raise
            if attempt >= policy.max_retries:
                if isinstance(exc, TransientError):
                    raise
                raise TransientError(
                    f"{description or 'Operation'} failed after {attempt + 1} attempts: {exc}"
                ) from exc
            attempt += 1
            logger.warning(
                "%s hit a transient error (attempt %d/%d), retrying in %ss: %s",
                description or "Operation", attempt, policy.max_retries, policy.delay_seconds, exc,
            )
            policy.sleep(policy.delay_seconds)
