"""Fixed-delay retry executor that paces every remote call."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

from strmsync.services.config_store import ALIST

if TYPE_CHECKING:
    from strmsync.services.config_store import AlistConfig, ConfigStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    retry_delay: float = 1.0  # seconds, before each retry
    req_delay: float = 0.1  # seconds, after each successful call

    @classmethod
    def from_config(cls, cfg: AlistConfig) -> RetryPolicy:
        return cls(
            max_retries=max(cfg.max_retries, 0),
            retry_delay=cfg.retry_delay_ms / 1000.0,
            req_delay=cfg.req_delay_ms / 1000.0,
        )


class RetryExecutor:
    """Runs an operation up to ``1 + max_retries`` times.

    No exponential backoff: the wait before every retry is the same, and
    every success is followed by ``req_delay`` so call cadence against the
    remote stays predictable.
    """

    def __init__(self, policy: RetryPolicy | None = None, config_store: ConfigStore | None = None):
        if policy is None and config_store is not None:
            policy = RetryPolicy.from_config(config_store.get(ALIST))
        self._policy = policy or RetryPolicy()
        if config_store is not None:
            config_store.subscribe(ALIST, self._on_config_change)

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def set_policy(self, policy: RetryPolicy) -> None:
        self._policy = policy

    def _on_config_change(self, cfg: AlistConfig) -> None:
        self._policy = RetryPolicy.from_config(cfg)
        logger.info(
            "Retry policy updated: max_retries=%d retry_delay=%.2fs req_delay=%.2fs",
            self._policy.max_retries, self._policy.retry_delay, self._policy.req_delay,
        )

    async def execute(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        """Run ``operation``; raise its last error once retries are exhausted."""
        # Snapshot once so a config change never alters an in-flight call.
        policy = self._policy
        attempt = 0
        while True:
            try:
                result = await operation()
            except Exception as e:
                if attempt >= policy.max_retries:
                    logger.error(
                        "%s failed after %d attempts: %s", description, attempt + 1, e
                    )
                    raise
                attempt += 1
                logger.warning(
                    "%s failed (%s), retry %d/%d in %.2fs",
                    description, e, attempt, policy.max_retries, policy.retry_delay,
                )
                await asyncio.sleep(policy.retry_delay)
                continue

            if policy.req_delay > 0:
                await asyncio.sleep(policy.req_delay)
            return result
