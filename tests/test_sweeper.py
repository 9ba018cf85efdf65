"""Tests for the batch expiration sweeper."""

import asyncio

import pytest

from grocery import repository
from grocery.models import OrderStatus
from grocery.sweeper import split_into_batches


def test_split_into_batches():
    assert split_into_batches([], 3) == []
    assert split_into_batches([1, 2, 3], 10) == [[1, 2, 3]]
    assert split_into_batches([1, 2, 3, 4], 2) == [[1, 2], [3, 4]]
    assert split_into_batches([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert split_into_batches([1, 2, 3], 1) == [[1], [2], [3]]
    with pytest.raises(ValueError):
        split_into_batches([1], 0)


async def test_nothing_to_expire(products, sweeper):
    result = await sweeper.expire_pending_orders()
    assert result.found == 0
    assert result.expired == 0


async def test_expires_stale_orders_once(products, lifecycle, sweeper, clock, stock_of):
    first = await lifecycle.create_order([("P1", 2)])
    clock.advance(minutes=10)
    second = await lifecycle.create_order([("P1", 3)])
    assert await stock_of("P1") == 5

    clock.advance(minutes=26)
    result = await sweeper.expire_pending_orders()
    assert (result.found, result.expired, result.failed) == (1, 1, 0)
    assert (await lifecycle.get_order_by_code(first.code)).status is OrderStatus.EXPIRED
    assert (await lifecycle.get_order_by_code(second.code)).status is OrderStatus.PENDING
    assert await stock_of("P1") == 7

    clock.advance(minutes=10)
    result = await sweeper.expire_pending_orders()
    assert (result.found, result.expired) == (1, 1)
    assert await stock_of("P1") == 10

    result = await sweeper.expire_pending_orders()
    assert (result.found, result.expired) == (0, 0)
    assert await stock_of("P1") == 10


async def test_paid_and_canceled_orders_are_left_alone(products, lifecycle, sweeper, clock, stock_of):
    paid = await lifecycle.create_order([("P1", 1)])
    canceled = await lifecycle.create_order([("P2", 1)])
    await lifecycle.pay_order(paid.code)
    await lifecycle.cancel_order(canceled.code)

    clock.advance(hours=1)
    result = await sweeper.expire_pending_orders()
    assert result.expired == 0
    assert (await lifecycle.get_order_by_code(paid.code)).status is OrderStatus.PAID
    assert await stock_of("P1") == 9
    assert await stock_of("P2") == 5


async def test_orders_older_than_lookback_are_skipped(products, lifecycle, sweeper, clock):
    order = await lifecycle.create_order([("P1", 1)])
    clock.advance(days=2)

    result = await sweeper.expire_pending_orders()
    assert result.found == 0
    assert (await lifecycle.get_order_by_code(order.code)).status is OrderStatus.PENDING


async def test_one_failing_order_does_not_stop_the_run(
    products, lifecycle, sweeper, clock, stock_of, monkeypatch
):
    created = [await lifecycle.create_order([("P1", 1)]) for _ in range(3)]
    broken_id = created[0].id
    expire_order = lifecycle.expire_order

    async def flaky_expire(order_id):
        if order_id == broken_id:
            raise RuntimeError("store went away")
        return await expire_order(order_id)

    monkeypatch.setattr(lifecycle, "expire_order", flaky_expire)
    clock.advance(hours=1)

    result = await sweeper.expire_pending_orders()
    assert (result.found, result.expired, result.failed) == (3, 2, 1)
    assert (await lifecycle.get_order_by_code(created[0].code)).status is OrderStatus.PENDING
    assert await stock_of("P1") == 9


async def test_order_paid_after_selection_is_not_expired(
    products, lifecycle, sweeper, session_factory, clock, stock_of, monkeypatch
):
    """The eligibility re-check inside expire_order sees the payment."""
    order = await lifecycle.create_order([("P1", 2)])
    clock.advance(hours=1)
    expire_order = lifecycle.expire_order

    async def pay_first(order_id):
        async with session_factory() as session:
            async with session.begin():
                await repository.transition_status(
                    session, order_id, OrderStatus.PENDING, OrderStatus.PAID, clock.now
                )
        return await expire_order(order_id)

    monkeypatch.setattr(lifecycle, "expire_order", pay_first)
    result = await sweeper.expire_pending_orders()

    assert result.expired == 0
    assert (await lifecycle.get_order_by_code(order.code)).status is OrderStatus.PAID
    assert await stock_of("P1") == 8


async def test_run_forever_survives_failed_runs(sweeper, monkeypatch):
    sweeper.settings = sweeper.settings.model_copy(update={"interval_seconds": 0.01})
    shutdown_event = asyncio.Event()
    runs = []

    async def sweep():
        runs.append(1)
        if len(runs) == 1:
            raise RuntimeError("boom")
        if len(runs) == 3:
            shutdown_event.set()

    monkeypatch.setattr(sweeper, "expire_pending_orders", sweep)
    await asyncio.wait_for(sweeper.run_forever(shutdown_event), timeout=5)
    assert len(runs) == 3
