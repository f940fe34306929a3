"""Shared helpers for marketplace tests."""

import asyncio

from mrbubble.invoice_logic import InvoiceLogic
from mrbubble.models import Order, OrderState
from mrbubble.order_logic import OrderLogic
from mrbubble.scan_logic import ScanLogic
from mrbubble.seed import seed_store
from mrbubble.split_logic import SplitLogic
from mrbubble.store import MemoryStore

LABEL_SECRET = "test-secret"
CUSTOMER = "cust-1"
DUBLIN = "shop-dublin-central"
CORK = "shop-cork-processing"

# Path through the lifecycle that skips subcontracting.
FORWARD_PATH = [
    OrderState.CONFIRMED,
    OrderState.PICKED_UP,
    OrderState.AT_ORIGIN_SHOP,
    OrderState.AT_PROCESSING_SHOP,
    OrderState.WASHING,
    OrderState.DRYING,
    OrderState.PRESSING,
    OrderState.QC,
    OrderState.PACKED,
    OrderState.OUT_FOR_DELIVERY,
    OrderState.DELIVERED,
    OrderState.CLOSED,
]


def run(coro):
    return asyncio.run(coro)


class Market:
    """Seeded in-memory store with every logic component wired to it."""

    def __init__(self):
        self.store = MemoryStore()
        self.orders = OrderLogic(self.store)
        self.scans = ScanLogic(self.store, self.orders, label_secret=LABEL_SECRET)
        self.splits = SplitLogic(self.store)
        self.invoices = InvoiceLogic(self.store)
        self.policy = run(seed_store(self.store))

    def place(self, lines=(("svc_laundry_kg", 2),), **kwargs) -> Order:
        kwargs.setdefault("customer_id", CUSTOMER)
        kwargs.setdefault("address_line1", "1 Main Street")
        kwargs.setdefault("city", "Drogheda")
        return run(self.orders.place_order(lines=list(lines), **kwargs))

    def order_in(self, state: OrderState, **kwargs) -> Order:
        """Place an order and walk it forward until it reaches ``state``."""
        order = self.place(**kwargs)
        if state == OrderState.CREATED:
            return order
        if state == OrderState.SUBCONTRACTED:
            order = self.order_in(OrderState.AT_ORIGIN_SHOP, **kwargs)
            run(self.orders.subcontract(order.id, CORK, "0.55"))
            return run(self.orders.get(order.id))
        for step in FORWARD_PATH:
            order = run(self.orders.transition(order.id, step))
            if step == state:
                return order
        raise ValueError(f"unreachable state {state}")

    def with_total(self, total_cents: int) -> Order:
        order = self.place()
        return run(self.orders.update_amounts(order.id, total_cents=total_cents))
