"""
Grocery Manager — expiration sweeper

Background task that reclaims stock from PENDING orders nobody came back
to pay or cancel. It expires orders through OrderLifecycle.expire_order,
the same guarded path lazy expiry uses, so a sweep racing a pay / cancel
on the same order never releases stock twice.

One run:
    1. pick PENDING order ids last touched inside
       [now - threshold, now - bottom_threshold], at most max_size
    2. load them batch_update_size at a time
    3. expire every order that is still overdue; a failure is logged
       and counted, the rest of the run carries on
"""

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar

from sqlalchemy.orm import sessionmaker

from . import repository
from .commands import OrderLifecycle
from .config import ExpirationSettings
from .models import OrderStatus, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


def split_into_batches(items: Sequence[T], batch_size: int) -> list[list[T]]:
    if batch_size < 1:
        raise ValueError("Batch size must be at least 1")
    return [list(items[i : i + batch_size]) for i in range(0, len(items), batch_size)]


@dataclass
class SweepResult:
    found: int = 0
    expired: int = 0
    failed: int = 0
    elapsed_ms: float = 0.0


class ExpirationSweeper:
    def __init__(
        self,
        session_factory: sessionmaker,
        lifecycle: OrderLifecycle,
        settings: ExpirationSettings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.lifecycle = lifecycle
        self.settings = settings
        self._clock = clock

    async def expire_pending_orders(self) -> SweepResult:
        started = time.perf_counter()
        result = SweepResult()

        now = self._clock()
        async with self._session_factory() as session:
            order_ids = await repository.find_ids_to_expire(
                session,
                lower=now - self.settings.threshold,
                upper=now - self.settings.bottom_threshold,
                statuses=[OrderStatus.PENDING],
                limit=self.settings.max_size,
            )
        result.found = len(order_ids)
        if not order_ids:
            logger.debug("No pending orders to expire")
            result.elapsed_ms = (time.perf_counter() - started) * 1000
            return result

        logger.info("Found %s pending orders to check for expiration", len(order_ids))
        for batch in split_into_batches(order_ids, self.settings.batch_update_size):
            async with self._session_factory() as session:
                orders = await repository.get_orders_by_ids(session, batch)

            for order in orders:
                if not order.should_expire(self._clock()):
                    continue
                try:
                    if await self.lifecycle.expire_order(order.id):
                        result.expired += 1
                except Exception as exc:
                    result.failed += 1
                    logger.error(
                        "Failed to expire order %s: %s. Continuing with next order.",
                        order.code,
                        exc,
                    )

        result.elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Total expired orders: %s. Failed: %s. Total time: %.0f ms.",
            result.expired,
            result.failed,
            result.elapsed_ms,
        )
        return result

    async def run_forever(self, shutdown_event: asyncio.Event) -> None:
        """Sweep every interval_seconds until shutdown_event is set."""
        logger.info(
            "Expiration sweeper started, interval %ss", self.settings.interval_seconds
        )
        while not shutdown_event.is_set():
            try:
                await self.expire_pending_orders()
            except Exception:
                logger.exception("Expiration sweep failed")
            try:
                await asyncio.wait_for(
                    shutdown_event.wait(), timeout=self.settings.interval_seconds
                )
            except asyncio.TimeoutError:
                pass
        logger.info("Expiration sweeper stopped")
