"""
Retry — bounded re-attempts for transient backend failures.

Only receipts marked ``transient`` (network/fetch failures) are
retried, with exponential backoff plus jitter. Deterministic failures
return immediately.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable

from sapphire.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Backoff schedule for transient failures."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        return delay + random.uniform(0, delay * 0.3)


def call_with_retry(
    fn: Callable[[], Receipt],
    policy: RetryPolicy,
    description: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> Receipt:
    """Call ``fn`` until it succeeds, fails deterministically, or attempts run out.

    Args:
        fn: Zero-argument callable returning a Receipt.
        policy: Backoff schedule.
        description: Label for log messages.
        sleep: Injected for tests.

    Returns:
        The last receipt. ``metadata["attempts"]`` records how many calls were made.
    """
    attempt = 0
    while True:
        attempt += 1
        receipt = fn()
        receipt.metadata["attempts"] = attempt

        if not receipt.failed or not receipt.transient:
            return receipt
        if attempt >= policy.max_attempts:
            logger.warning(
                "%s: transient failure persisted after %d attempts: %s",
                description, attempt, receipt.error,
            )
            return receipt

        delay = policy.delay_for(attempt)
        logger.info(
            "%s: transient failure (attempt %d/%d), retrying in %.1fs: %s",
            description, attempt, policy.max_attempts, delay, receipt.error,
        )
        sleep(delay)
