from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from .interfaces import UsageLedger
from .logging_config import logger
from .schemas import PlanInfo, UsageRecord
from .settings import settings

TOKENS_PER_PRICE_UNIT = 1_000_000
# Split applied when a backend only reports a total.
INPUT_TOKEN_SHARE = 0.7


def split_total_tokens(total: int) -> tuple[int, int]:
    total = max(0, int(total))
    return int(total * INPUT_TOKEN_SHARE), int(total * (1 - INPUT_TOKEN_SHARE))


def calculate_cost(plan: PlanInfo | None, tokens_in: int, tokens_out: int) -> float:
    """USD cost of a turn; plan prices are per 1M tokens."""
    if plan is None:
        return 0.0
    cost = (
        tokens_in / TOKENS_PER_PRICE_UNIT * plan.input_token_price
        + tokens_out / TOKENS_PER_PRICE_UNIT * plan.output_token_price
    )
    return round(cost, 8)


class UsageRecorder:
    """
    Records usage against the ledger with bounded retries.

    Losing a usage record under-bills the client, so transient ledger
    failures are retried with exponential backoff before giving up.
    """

    def __init__(
        self,
        ledger: UsageLedger,
        *,
        attempts: int | None = None,
        backoff_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._ledger = ledger
        self._attempts = max(1, attempts or settings.usage_record_attempts)
        self._backoff = (
            settings.usage_record_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self._sleep = sleep

    async def record(self, usage: UsageRecord) -> bool:
        for attempt in range(1, self._attempts + 1):
            try:
                await self._ledger.record(usage)
                return True
            except Exception as exc:
                if attempt >= self._attempts:
                    logger.error(
                        "giving up recording usage for client %s after %d attempt(s): %s",
                        usage.client_id,
                        attempt,
                        exc,
                    )
                    return False
                delay = self._backoff * (2 ** (attempt - 1))
                logger.warning(
                    "usage recording attempt %d failed for client %s: %s; retrying in %.2fs",
                    attempt,
                    usage.client_id,
                    exc,
                    delay,
                )
                await self._sleep(delay)
        return False


__all__ = ["UsageRecorder", "calculate_cost", "split_total_tokens"]
