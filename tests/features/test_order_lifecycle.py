"""Order lifecycle scenarios."""

import asyncio

import pytest
from pytest_bdd import given, parsers, scenarios, then, when

from mrbubble.errors import MarketplaceError
from mrbubble.models import OrderState
from support import Market, run

scenarios("order_lifecycle.feature")


class LifecycleContext:
    def __init__(self):
        self.market = None
        self.order = None
        self.error = None
        self.claims = []


@pytest.fixture
def ctx():
    return LifecycleContext()


def attempt(ctx, coro):
    try:
        return run(coro)
    except MarketplaceError as e:
        ctx.error = e
        return None


def current(ctx):
    return run(ctx.market.orders.get(ctx.order.id))


# --- Given steps ---


@given("a seeded marketplace")
def seeded_marketplace(ctx):
    ctx.market = Market()


@given("a confirmed order")
def confirmed_order(ctx):
    ctx.order = ctx.market.order_in(OrderState.CONFIRMED)


@given(parsers.parse('an order in state "{state}"'))
def order_in_state(ctx, state):
    ctx.order = ctx.market.order_in(OrderState(state))


# --- When steps ---


@when(parsers.parse('driver "{driver}" claims the order'))
def driver_claims(ctx, driver):
    attempt(ctx, ctx.market.orders.claim(ctx.order.id, driver))


@when(parsers.parse('a "{role}" scans "{scan_type}"'))
def role_scans(ctx, role, scan_type):
    payload = {
        "type": scan_type,
        "order_id": ctx.order.id,
        "scanned_by": f"{role}-1",
        "scanned_by_role": role,
    }
    attempt(ctx, ctx.market.scans.ingest(payload))


@when(parsers.parse('a "{role}" hands the order to shop "{shop_id}"'))
def hands_to_shop(ctx, role, shop_id):
    payload = {
        "type": "handoff.to_shop",
        "order_id": ctx.order.id,
        "scanned_by": f"{role}-1",
        "scanned_by_role": role,
        "to_party": {"type": "shop", "id": shop_id},
    }
    attempt(ctx, ctx.market.scans.ingest(payload))


@when(parsers.parse('the order is subcontracted to "{shop_id}" at {pct}'))
def subcontracted(ctx, shop_id, pct):
    attempt(ctx, ctx.market.orders.subcontract(ctx.order.id, shop_id, pct))


@when(parsers.parse('the order is moved to "{state}"'))
def moved_to(ctx, state):
    attempt(ctx, ctx.market.orders.transition(ctx.order.id, state))


@when(parsers.parse('drivers "{first}" and "{second}" claim the order at the same time'))
def concurrent_claims(ctx, first, second):
    async def race():
        return await asyncio.gather(
            ctx.market.orders.claim(ctx.order.id, first),
            ctx.market.orders.claim(ctx.order.id, second),
            return_exceptions=True,
        )

    ctx.claims = run(race())


# --- Then steps ---


@then(parsers.parse('the order state is "{state}"'))
def order_state_is(ctx, state):
    assert current(ctx).state == OrderState(state)


@then(parsers.parse('the origin shop is "{shop_id}"'))
def origin_shop_is(ctx, shop_id):
    assert current(ctx).origin_shop_id == shop_id


@then(parsers.parse('the processing shop is "{shop_id}"'))
def processing_shop_is(ctx, shop_id):
    assert current(ctx).processing_shop_id == shop_id


@then(parsers.parse("the audit trail has {count:d} scans"))
def audit_trail_count(ctx, count):
    assert len(run(ctx.market.scans.scans_for_order(ctx.order.id))) == count


@then(parsers.parse('the request fails with "{kind}"'))
def request_fails(ctx, kind):
    assert ctx.error is not None
    assert ctx.error.kind == kind


@then("exactly one claim succeeds")
def one_claim_succeeds(ctx):
    winners = [c for c in ctx.claims if not isinstance(c, Exception)]
    assert len(winners) == 1
    assert current(ctx).driver_id == winners[0].driver_id


@then(parsers.parse('the losing claim fails with "{kind}"'))
def losing_claim(ctx, kind):
    losers = [c for c in ctx.claims if isinstance(c, Exception)]
    assert [e.kind for e in losers] == [kind]
