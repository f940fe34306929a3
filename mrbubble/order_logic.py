"""Order lifecycle: checkout, state transitions, driver claims, subcontracting."""

from __future__ import annotations

from dataclasses import replace
from typing import Optional

import structlog

from .errors import (
    AlreadyAssignedError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    errmsg,
)
from .models import (
    MONEY_FIELDS,
    STATE_TIMESTAMP_FIELDS,
    Order,
    OrderLine,
    OrderState,
    PaymentMethod,
    Scan,
    ScanType,
    Subcontract,
    new_id,
    utcnow,
)
from .pricing import price_line, price_order, to_decimal, vat_cents
from .store import Store
from .validation import (
    require_between,
    require_cents,
    require_found,
    require_not_empty,
    require_positive,
    require_present,
)

S = OrderState

TRANSITIONS: dict[OrderState, frozenset[OrderState]] = {
    S.CREATED: frozenset({S.CONFIRMED}),
    S.CONFIRMED: frozenset({S.PICKED_UP}),
    S.PICKED_UP: frozenset({S.AT_ORIGIN_SHOP}),
    S.AT_ORIGIN_SHOP: frozenset({S.SUBCONTRACTED, S.AT_PROCESSING_SHOP}),
    S.SUBCONTRACTED: frozenset({S.AT_PROCESSING_SHOP}),
    S.AT_PROCESSING_SHOP: frozenset({S.WASHING}),
    S.WASHING: frozenset({S.DRYING}),
    S.DRYING: frozenset({S.PRESSING}),
    S.PRESSING: frozenset({S.QC}),
    S.QC: frozenset({S.PACKED}),
    S.PACKED: frozenset({S.OUT_FOR_DELIVERY}),
    S.OUT_FOR_DELIVERY: frozenset({S.DELIVERED}),
    S.DELIVERED: frozenset({S.CLOSED}),
    S.CLOSED: frozenset(),
}

# State a scan moves the order into, when that move is legal.
SCAN_TARGETS: dict[ScanType, OrderState] = {
    ScanType.PICKUP: S.PICKED_UP,
    ScanType.HANDOFF_TO_SHOP: S.AT_ORIGIN_SHOP,
    ScanType.INTAKE: S.AT_ORIGIN_SHOP,
    ScanType.HANDOFF_TO_PROCESSING: S.AT_PROCESSING_SHOP,
    ScanType.QC: S.QC,
    ScanType.PACK: S.PACKED,
    ScanType.HANDOFF_TO_DRIVER: S.OUT_FOR_DELIVERY,
    ScanType.DELIVERY: S.DELIVERED,
}


def parse_state(value) -> OrderState:
    try:
        return OrderState(value)
    except ValueError as e:
        raise InvalidInputError(f"Unknown order state: {value!r}", e) from e


def allowed_next(state: OrderState) -> frozenset[OrderState]:
    return TRANSITIONS[state]


def can_transition(current: OrderState, new: OrderState) -> bool:
    return new in TRANSITIONS[current]


class OrderLogic:
    """Owns Order.state and driver assignment."""

    def __init__(self, store: Store, log: Optional[structlog.BoundLogger] = None):
        self.store = store
        self.log = log or structlog.get_logger()

    async def get(self, order_id: str) -> Order:
        return require_found(await self.store.get_order(order_id), errmsg.ORDER_NOT_FOUND)

    async def place_order(
        self,
        customer_id: str,
        address_line1: str,
        city: str,
        lines: list[tuple[str, object]],
        payment_method=None,
        address_line2: str = "",
        eircode: str = "",
        notes: str = "",
        pickup_date: str = "",
        time_window: str = "",
        customer_full_name: str = "",
        customer_phone: str = "",
        delivery_fee_cents: int = 0,
        tip_cents: int = 0,
    ) -> Order:
        """Price ``(service_code, quantity)`` lines and persist a created order."""
        require_present(customer_id, "Customer ID is required")
        require_present(address_line1, errmsg.ADDRESS_REQUIRED)
        require_present(city, errmsg.ADDRESS_REQUIRED)
        require_not_empty(lines, errmsg.LINES_REQUIRED)
        delivery_fee_cents = require_cents(delivery_fee_cents)
        tip_cents = require_cents(tip_cents)
        if payment_method is not None:
            try:
                payment_method = PaymentMethod(payment_method)
            except ValueError as e:
                raise InvalidInputError(f"Unknown payment method: {payment_method!r}", e) from e

        priced = []
        for code, quantity in lines:
            service = require_found(
                await self.store.get_service_by_code(code),
                f"{errmsg.SERVICE_NOT_FOUND}: {code}",
            )
            try:
                priced.append(price_line(service, quantity))
            except (ArithmeticError, TypeError, ValueError) as e:
                raise InvalidInputError(f"Invalid quantity: {quantity!r}", e) from e
        pricing = price_order(priced, delivery_fee_cents, tip_cents)

        order = Order(
            id=new_id(),
            customer_id=customer_id,
            address_line1=address_line1,
            address_line2=address_line2,
            city=city,
            eircode=eircode,
            customer_full_name=customer_full_name,
            customer_phone=customer_phone,
            pickup_date=pickup_date,
            time_window=time_window,
            subtotal_cents=pricing.subtotal_cents,
            delivery_fee_cents=delivery_fee_cents,
            tip_cents=tip_cents,
            vat_cents=pricing.vat_cents,
            total_cents=pricing.total_cents,
            payment_method=payment_method,
            notes=notes,
        )
        order_lines = [
            OrderLine(
                id=new_id(),
                order_id=order.id,
                service_id=line.service.id,
                quantity=line.quantity,
                unit_price_cents=line.service.unit_price_cents,
                total_cents=line.total_cents,
            )
            for line in priced
        ]
        await self.store.create_order(order, order_lines)
        self.log.info(
            "order_placed",
            order_id=order.id,
            customer_id=customer_id,
            line_count=len(order_lines),
            total_cents=order.total_cents,
        )
        return order

    async def transition(self, order_id: str, new_state) -> Order:
        """Move an order to the immediate next state."""
        new_state = parse_state(new_state)
        order = await self.get(order_id)
        return await self._advance(order, new_state)

    async def confirm(self, order_id: str) -> Order:
        return await self.transition(order_id, OrderState.CONFIRMED)

    async def claim(self, order_id: str, driver_id: str) -> Order:
        """Assign a driver to a confirmed, unassigned order.

        The assignment is a single compare-and-swap; losing it raises
        AlreadyAssignedError.
        """
        require_present(driver_id, "Driver ID is required")
        claimed = await self.store.assign_driver_if_unassigned(
            order_id, driver_id, updated_at=utcnow()
        )
        if claimed is not None:
            self.log.info("order_claimed", order_id=order_id, driver_id=driver_id)
            return claimed

        order = await self.get(order_id)
        if order.driver_id == driver_id:
            return order
        if order.driver_id is not None:
            self.log.info(
                "order_claim_lost",
                order_id=order_id,
                driver_id=driver_id,
                assigned_to=order.driver_id,
            )
            raise AlreadyAssignedError(order_id)
        raise InvalidTransitionError(
            order.state.value, "claimed", f"{errmsg.ORDER_NOT_CONFIRMED}: {order.state.value}"
        )

    async def available_for_pickup(self) -> list[Order]:
        return [o for o in await self.store.list_orders() if o.is_awaiting_pickup()]

    async def subcontract(
        self,
        order_id: str,
        to_shop_id: str,
        processing_pct,
        sla_hours: Optional[int] = None,
    ) -> Subcontract:
        """Route processing to another shop and move the order to subcontracted."""
        try:
            pct = to_decimal(processing_pct)
        except (ArithmeticError, TypeError, ValueError) as e:
            raise InvalidInputError(errmsg.PROCESSING_PCT_RANGE, e) from e
        if not pct.is_finite():
            raise InvalidInputError(errmsg.PROCESSING_PCT_RANGE)
        require_between(pct, 0, 1, errmsg.PROCESSING_PCT_RANGE)
        if sla_hours is not None:
            require_positive(sla_hours, errmsg.SLA_POSITIVE)

        order = await self.get(order_id)
        require_found(await self.store.get_shop(to_shop_id), errmsg.SHOP_NOT_FOUND)
        if not can_transition(order.state, OrderState.SUBCONTRACTED):
            raise InvalidTransitionError(
                order.state.value,
                OrderState.SUBCONTRACTED.value,
                f"Cannot subcontract from state {order.state.value}",
            )

        await self._advance(order, OrderState.SUBCONTRACTED, processing_shop_id=to_shop_id)
        subcontract = await self.store.create_subcontract(
            Subcontract(
                id=new_id(),
                order_id=order_id,
                from_shop_id=order.origin_shop_id or "",
                to_shop_id=to_shop_id,
                processing_pct=pct,
                sla_hours=sla_hours,
            )
        )
        self.log.info(
            "order_subcontracted",
            order_id=order_id,
            to_shop_id=to_shop_id,
            processing_pct=str(pct),
        )
        return subcontract

    async def apply_scan(self, scan: Scan) -> Optional[Order]:
        """Advance the order a scan implies, when that step is legal.

        Returns the updated order, or None when the scan leaves the state
        as it is.
        """
        target = SCAN_TARGETS.get(scan.type)
        order = await self.get(scan.order_id)
        if target is None or not can_transition(order.state, target):
            self.log.info(
                "scan_transition_skipped",
                order_id=order.id,
                scan_type=scan.type.value,
                state=order.state.value,
            )
            return None

        extra = {}
        shop_side = scan.to_party is not None and scan.to_party.type == "shop"
        if target == OrderState.AT_ORIGIN_SHOP and shop_side and order.origin_shop_id is None:
            extra["origin_shop_id"] = scan.to_party.id
        if target == OrderState.AT_PROCESSING_SHOP and shop_side and order.processing_shop_id is None:
            extra["processing_shop_id"] = scan.to_party.id

        try:
            return await self._advance(order, target, **extra)
        except InvalidTransitionError:
            self.log.warning(
                "scan_transition_lost_race",
                order_id=order.id,
                scan_type=scan.type.value,
                target=target.value,
            )
            return None

    async def update_amounts(self, order_id: str, **amounts) -> Order:
        """Rewrite monetary fields on an open order.

        Changing the subtotal recomputes VAT. Changing any component without
        an explicit ``total_cents`` recomputes the total.
        """
        unknown = set(amounts) - set(MONEY_FIELDS)
        if unknown:
            raise InvalidInputError(f"Not a monetary field: {sorted(unknown)}")
        changes = {name: require_cents(value) for name, value in amounts.items()}

        order = await self.get(order_id)
        if order.is_closed():
            raise InvalidTransitionError(order.state.value, order.state.value, errmsg.ORDER_CLOSED)

        if "subtotal_cents" in changes:
            changes.setdefault("vat_cents", vat_cents(changes["subtotal_cents"]))
        if changes and "total_cents" not in changes:
            merged = replace(order, **changes)
            changes["total_cents"] = (
                merged.subtotal_cents
                + merged.vat_cents
                + merged.delivery_fee_cents
                + merged.tip_cents
            )

        updated = await self.store.update_order_if_state(
            order_id, order.state, updated_at=utcnow(), **changes
        )
        if updated is None:
            current = await self.get(order_id)
            raise InvalidTransitionError(
                current.state.value,
                current.state.value,
                f"Order changed state to {current.state.value} during update",
            )
        self.log.info("order_amounts_updated", order_id=order_id, **changes)
        return updated

    async def _advance(self, order: Order, new_state: OrderState, **extra) -> Order:
        if order.is_closed():
            raise InvalidTransitionError(order.state.value, new_state.value, errmsg.ORDER_CLOSED)
        if not can_transition(order.state, new_state):
            raise InvalidTransitionError(order.state.value, new_state.value)

        now = utcnow()
        changes = {"state": new_state, "updated_at": now, **extra}
        changes[STATE_TIMESTAMP_FIELDS[new_state]] = now

        updated = await self.store.update_order_if_state(order.id, order.state, **changes)
        if updated is None:
            current = await self.store.get_order(order.id)
            if current is None:
                raise NotFoundError(errmsg.ORDER_NOT_FOUND)
            raise InvalidTransitionError(current.state.value, new_state.value)

        self.log.info(
            "order_transitioned",
            order_id=order.id,
            from_state=order.state.value,
            to_state=new_state.value,
        )
        return updated
