"""Tests for the order lifecycle."""

import asyncio

import pytest

from mrbubble.errors import (
    AlreadyAssignedError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    errmsg,
)
from mrbubble.models import OrderState, Party, Scan, ScanType, UserRole, new_id
from mrbubble.order_logic import TRANSITIONS, allowed_next, can_transition
from support import CORK, DUBLIN, FORWARD_PATH, run

S = OrderState


class TestTransitionTable:
    def test_every_state_has_an_entry(self):
        assert set(TRANSITIONS) == set(OrderState)

    def test_closed_is_terminal(self):
        assert allowed_next(S.CLOSED) == frozenset()

    def test_origin_shop_branches(self):
        assert allowed_next(S.AT_ORIGIN_SHOP) == {S.SUBCONTRACTED, S.AT_PROCESSING_SHOP}

    def test_no_backward_moves(self):
        order = list(OrderState)
        for current, allowed in TRANSITIONS.items():
            for target in allowed:
                assert order.index(target) > order.index(current)

    def test_no_skipping(self):
        assert not can_transition(S.CREATED, S.PICKED_UP)
        assert not can_transition(S.WASHING, S.QC)


class TestPlaceOrder:
    def test_prices_lines_and_vat(self, market):
        order = market.place(lines=[("svc_laundry_kg", 2)])
        assert order.state == S.CREATED
        assert order.subtotal_cents == 1000
        assert order.vat_cents == 230
        assert order.total_cents == 1230
        lines = run(market.store.lines_for_order(order.id))
        assert [(line.unit_price_cents, line.total_cents) for line in lines] == [(500, 1000)]

    def test_delivery_fee_and_tip(self, market):
        order = market.place(delivery_fee_cents=299, tip_cents=100)
        assert order.total_cents == 1230 + 299 + 100

    def test_unknown_service(self, market):
        with pytest.raises(NotFoundError):
            market.place(lines=[("svc_gold_plating", 1)])

    def test_non_positive_quantity(self, market):
        with pytest.raises(InvalidInputError):
            market.place(lines=[("svc_laundry_kg", 0)])

    def test_non_numeric_quantity(self, market):
        with pytest.raises(InvalidInputError):
            market.place(lines=[("svc_laundry_kg", "lots")])

    def test_address_required(self, market):
        with pytest.raises(InvalidInputError, match=errmsg.ADDRESS_REQUIRED):
            market.place(address_line1="")

    def test_lines_required(self, market):
        with pytest.raises(InvalidInputError):
            market.place(lines=[])

    def test_unknown_payment_method(self, market):
        with pytest.raises(InvalidInputError):
            market.place(payment_method="barter")


class TestTransition:
    def test_full_forward_path_stamps_timestamps(self, market):
        order = market.order_in(S.CLOSED)
        assert order.state == S.CLOSED
        for field in ("confirmed_at", "picked_up_at", "washing_at", "delivered_at", "closed_at"):
            assert getattr(order, field) is not None
        assert order.subcontracted_at is None

    def test_skip_rejected(self, market):
        order = market.place()
        with pytest.raises(InvalidTransitionError) as exc:
            run(market.orders.transition(order.id, S.PICKED_UP))
        assert exc.value.current == "created"
        assert exc.value.requested == "picked_up"

    def test_backward_rejected(self, market):
        order = market.order_in(S.PICKED_UP)
        with pytest.raises(InvalidTransitionError):
            run(market.orders.transition(order.id, S.CONFIRMED))

    def test_closed_is_immutable(self, market):
        order = market.order_in(S.CLOSED)
        for state in OrderState:
            with pytest.raises(InvalidTransitionError):
                run(market.orders.transition(order.id, state))
        with pytest.raises(InvalidTransitionError, match=errmsg.ORDER_CLOSED):
            run(market.orders.update_amounts(order.id, tip_cents=100))

    def test_accepts_state_value(self, market):
        order = market.place()
        assert run(market.orders.transition(order.id, "confirmed")).state == S.CONFIRMED

    def test_unknown_state_value(self, market):
        order = market.place()
        with pytest.raises(InvalidInputError):
            run(market.orders.transition(order.id, "teleported"))

    def test_unknown_order(self, market):
        with pytest.raises(NotFoundError):
            run(market.orders.transition("missing", S.CONFIRMED))

    def test_concurrent_transition_loses(self, market):
        order = market.order_in(S.CONFIRMED)

        async def race():
            return await asyncio.gather(
                market.orders.transition(order.id, S.PICKED_UP),
                market.orders.transition(order.id, S.PICKED_UP),
                return_exceptions=True,
            )

        results = run(race())
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidTransitionError)


class TestClaim:
    def test_claim_confirmed_order(self, market):
        order = market.order_in(S.CONFIRMED)
        claimed = run(market.orders.claim(order.id, "driver-1"))
        assert claimed.driver_id == "driver-1"
        assert claimed.state == S.CONFIRMED

    def test_second_driver_rejected(self, market):
        order = market.order_in(S.CONFIRMED)
        run(market.orders.claim(order.id, "driver-1"))
        with pytest.raises(AlreadyAssignedError):
            run(market.orders.claim(order.id, "driver-2"))

    def test_same_driver_reclaim_returns_order(self, market):
        order = market.order_in(S.CONFIRMED)
        run(market.orders.claim(order.id, "driver-1"))
        assert run(market.orders.claim(order.id, "driver-1")).driver_id == "driver-1"

    def test_unconfirmed_order(self, market):
        order = market.place()
        with pytest.raises(InvalidTransitionError):
            run(market.orders.claim(order.id, "driver-1"))

    def test_unknown_order(self, market):
        with pytest.raises(NotFoundError):
            run(market.orders.claim("missing", "driver-1"))

    def test_concurrent_claims_have_one_winner(self, market):
        order = market.order_in(S.CONFIRMED)
        drivers = [f"driver-{i}" for i in range(5)]

        async def race():
            return await asyncio.gather(
                *(market.orders.claim(order.id, d) for d in drivers),
                return_exceptions=True,
            )

        results = run(race())
        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 4
        assert all(isinstance(e, AlreadyAssignedError) for e in losers)
        assert run(market.orders.get(order.id)).driver_id == winners[0].driver_id

    def test_claimed_order_leaves_pickup_pool(self, market):
        first = market.order_in(S.CONFIRMED)
        second = market.order_in(S.CONFIRMED)
        run(market.orders.claim(first.id, "driver-1"))
        pool = run(market.orders.available_for_pickup())
        assert [o.id for o in pool] == [second.id]


class TestSubcontract:
    def test_subcontract_from_origin_shop(self, market):
        order = market.order_in(S.AT_ORIGIN_SHOP)
        sub = run(market.orders.subcontract(order.id, CORK, 0.55, sla_hours=24))
        updated = run(market.orders.get(order.id))
        assert updated.state == S.SUBCONTRACTED
        assert updated.processing_shop_id == CORK
        assert str(sub.processing_pct) == "0.55"
        assert sub.sla_hours == 24
        assert run(market.store.subcontracts_for_order(order.id)) == [sub]

    def test_then_processing_shop(self, market):
        order = market.order_in(S.SUBCONTRACTED)
        assert run(market.orders.transition(order.id, S.AT_PROCESSING_SHOP)).state == S.AT_PROCESSING_SHOP

    def test_wrong_state(self, market):
        order = market.order_in(S.PICKED_UP)
        with pytest.raises(InvalidTransitionError):
            run(market.orders.subcontract(order.id, CORK, "0.5"))

    @pytest.mark.parametrize("pct", ["1.5", "-0.1", "NaN", "abc"])
    def test_pct_out_of_range(self, market, pct):
        order = market.order_in(S.AT_ORIGIN_SHOP)
        with pytest.raises(InvalidInputError):
            run(market.orders.subcontract(order.id, CORK, pct))

    def test_sla_must_be_positive(self, market):
        order = market.order_in(S.AT_ORIGIN_SHOP)
        with pytest.raises(InvalidInputError, match=errmsg.SLA_POSITIVE):
            run(market.orders.subcontract(order.id, CORK, "0.5", sla_hours=0))

    def test_unknown_shop(self, market):
        order = market.order_in(S.AT_ORIGIN_SHOP)
        with pytest.raises(NotFoundError):
            run(market.orders.subcontract(order.id, "shop-nowhere", "0.5"))


def make_scan(order_id, scan_type, to_party=None) -> Scan:
    return Scan(
        id=new_id(),
        type=scan_type,
        order_id=order_id,
        scanned_by="admin-1",
        scanned_by_role=UserRole.ADMIN,
        to_party=to_party,
    )


class TestApplyScan:
    def test_pickup_scan_advances(self, market):
        order = market.order_in(S.CONFIRMED)
        updated = run(market.orders.apply_scan(make_scan(order.id, ScanType.PICKUP)))
        assert updated.state == S.PICKED_UP

    def test_handoff_to_shop_records_origin(self, market):
        order = market.order_in(S.PICKED_UP)
        scan = make_scan(order.id, ScanType.HANDOFF_TO_SHOP, Party("shop", DUBLIN))
        updated = run(market.orders.apply_scan(scan))
        assert updated.state == S.AT_ORIGIN_SHOP
        assert updated.origin_shop_id == DUBLIN

    def test_illegal_scan_leaves_state(self, market):
        order = market.place()
        assert run(market.orders.apply_scan(make_scan(order.id, ScanType.DELIVERY))) is None
        assert run(market.orders.get(order.id)).state == S.CREATED

    def test_intake_after_handoff_is_skipped(self, market):
        order = market.order_in(S.AT_ORIGIN_SHOP)
        assert run(market.orders.apply_scan(make_scan(order.id, ScanType.INTAKE))) is None


class TestUpdateAmounts:
    def test_subtotal_recomputes_vat_and_total(self, market):
        order = market.place(delivery_fee_cents=200)
        updated = run(market.orders.update_amounts(order.id, subtotal_cents=2000))
        assert updated.vat_cents == 460
        assert updated.total_cents == 2000 + 460 + 200

    def test_tip_alone_recomputes_total(self, market):
        order = market.place()
        updated = run(market.orders.update_amounts(order.id, tip_cents=100))
        assert updated.total_cents == order.total_cents + 100
        assert updated.vat_cents == order.vat_cents

    def test_delivery_fee_alone_recomputes_total(self, market):
        order = market.place(delivery_fee_cents=200)
        updated = run(market.orders.update_amounts(order.id, delivery_fee_cents=350))
        assert updated.total_cents == order.total_cents + 150

    def test_explicit_total_kept(self, market):
        order = market.place()
        updated = run(market.orders.update_amounts(order.id, tip_cents=100, total_cents=999))
        assert updated.total_cents == 999

    def test_negative_rejected(self, market):
        order = market.place()
        with pytest.raises(InvalidInputError):
            run(market.orders.update_amounts(order.id, tip_cents=-5))

    def test_unknown_field_rejected(self, market):
        order = market.place()
        with pytest.raises(InvalidInputError):
            run(market.orders.update_amounts(order.id, state="closed"))


def test_forward_path_covers_every_state_but_subcontracted():
    assert set(FORWARD_PATH) | {S.CREATED, S.SUBCONTRACTED} == set(OrderState)
