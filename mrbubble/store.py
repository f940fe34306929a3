"""Persistence collaborator.

The core talks to storage only through :class:`Store`. Every operation that
would be a read-then-write race against a real datastore is a single
conditional call here (compare-and-swap style), so callers never write based
on a value they read earlier.
"""

from __future__ import annotations

import asyncio
import itertools
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Callable, Optional

from .models import (
    Bag,
    Invoice,
    InvoiceStatus,
    Item,
    Order,
    OrderLine,
    OrderState,
    Scan,
    Service,
    Shop,
    Split,
    SplitPolicy,
    Subcontract,
    User,
)


class Store(ABC):
    """Async get/set operations per entity. No business logic."""

    # Users, services, shops

    @abstractmethod
    async def put_user(self, user: User) -> User: ...

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def put_service(self, service: Service) -> Service: ...

    @abstractmethod
    async def get_service(self, service_id: str) -> Optional[Service]: ...

    @abstractmethod
    async def get_service_by_code(self, code: str) -> Optional[Service]: ...

    @abstractmethod
    async def list_services(self) -> list[Service]: ...

    @abstractmethod
    async def put_shop(self, shop: Shop) -> Shop: ...

    @abstractmethod
    async def get_shop(self, shop_id: str) -> Optional[Shop]: ...

    # Orders

    @abstractmethod
    async def create_order(self, order: Order, lines: list[OrderLine]) -> Order: ...

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[Order]: ...

    @abstractmethod
    async def list_orders(self) -> list[Order]: ...

    @abstractmethod
    async def lines_for_order(self, order_id: str) -> list[OrderLine]: ...

    @abstractmethod
    async def update_order_if_state(
        self, order_id: str, expected: OrderState, **changes
    ) -> Optional[Order]:
        """Apply changes only while the order is still in ``expected``.

        Returns None when zero rows were affected.
        """

    @abstractmethod
    async def assign_driver_if_unassigned(
        self, order_id: str, driver_id: str, **changes
    ) -> Optional[Order]:
        """Set driver_id where the order is confirmed and driver_id is null.

        Returns None when zero rows were affected.
        """

    # Bags, items, scans

    @abstractmethod
    async def create_bag(self, bag: Bag) -> Bag: ...

    @abstractmethod
    async def get_bag(self, bag_id: str) -> Optional[Bag]: ...

    @abstractmethod
    async def bags_for_order(self, order_id: str) -> list[Bag]: ...

    @abstractmethod
    async def create_item(self, item: Item) -> Item: ...

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[Item]: ...

    @abstractmethod
    async def append_scan(self, scan: Scan) -> Scan:
        """Insert a scan, assigning its store-wide sequence number."""

    @abstractmethod
    async def scans_for_order(self, order_id: str) -> list[Scan]:
        """Scans for an order, newest first."""

    # Subcontracts

    @abstractmethod
    async def create_subcontract(self, subcontract: Subcontract) -> Subcontract: ...

    @abstractmethod
    async def subcontracts_for_order(self, order_id: str) -> list[Subcontract]: ...

    # Split policies and splits

    @abstractmethod
    async def create_policy(self, policy: SplitPolicy) -> SplitPolicy:
        """Insert a policy. An active policy deactivates all others atomically."""

    @abstractmethod
    async def get_policy(self, policy_id: str) -> Optional[SplitPolicy]: ...

    @abstractmethod
    async def list_policies(self) -> list[SplitPolicy]: ...

    @abstractmethod
    async def active_policy(self) -> Optional[SplitPolicy]: ...

    @abstractmethod
    async def activate_policy(self, policy_id: str) -> Optional[SplitPolicy]:
        """Deactivate every policy and activate one, as one operation."""

    @abstractmethod
    async def order_and_active_policy(
        self, order_id: str
    ) -> tuple[Optional[Order], Optional[SplitPolicy]]:
        """Read an order and the active policy in one consistent snapshot."""

    @abstractmethod
    async def append_split(self, split: Split) -> Split: ...

    @abstractmethod
    async def splits_for_order(self, order_id: str) -> list[Split]: ...

    @abstractmethod
    async def list_splits(self) -> list[Split]: ...

    # Invoices

    @abstractmethod
    async def create_invoice_if_absent(
        self, order_id: str, build: Callable[[str], Invoice]
    ) -> tuple[Invoice, bool]:
        """Return the order's invoice, creating it when none exists.

        ``build`` receives the next invoice number. The boolean is True when
        a new invoice was inserted.
        """

    @abstractmethod
    async def get_invoice(self, invoice_id: str) -> Optional[Invoice]: ...

    @abstractmethod
    async def invoice_for_order(self, order_id: str) -> Optional[Invoice]: ...

    @abstractmethod
    async def update_invoice_if_status(
        self, invoice_id: str, expected: InvoiceStatus, **changes
    ) -> Optional[Invoice]: ...


class MemoryStore(Store):
    """In-process store.

    Conditional operations run under one asyncio.Lock so they behave like
    single statements against a datastore.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._users: dict[str, User] = {}
        self._services: dict[str, Service] = {}
        self._shops: dict[str, Shop] = {}
        self._orders: dict[str, Order] = {}
        self._lines: dict[str, list[OrderLine]] = {}
        self._bags: dict[str, Bag] = {}
        self._items: dict[str, Item] = {}
        self._scans: list[Scan] = []
        self._subcontracts: list[Subcontract] = []
        self._policies: dict[str, SplitPolicy] = {}
        self._splits: list[Split] = []
        self._invoices: dict[str, Invoice] = {}
        self._invoice_by_order: dict[str, str] = {}
        self._scan_seq = itertools.count(1)
        self._invoice_seq = itertools.count(1)

    async def put_user(self, user: User) -> User:
        self._users[user.id] = user
        return user

    async def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    async def put_service(self, service: Service) -> Service:
        self._services[service.id] = service
        return service

    async def get_service(self, service_id: str) -> Optional[Service]:
        return self._services.get(service_id)

    async def get_service_by_code(self, code: str) -> Optional[Service]:
        for service in self._services.values():
            if service.service_code == code:
                return service
        return None

    async def list_services(self) -> list[Service]:
        return list(self._services.values())

    async def put_shop(self, shop: Shop) -> Shop:
        self._shops[shop.id] = shop
        return shop

    async def get_shop(self, shop_id: str) -> Optional[Shop]:
        return self._shops.get(shop_id)

    async def create_order(self, order: Order, lines: list[OrderLine]) -> Order:
        async with self._lock:
            self._orders[order.id] = order
            self._lines[order.id] = list(lines)
        return order

    async def get_order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    async def list_orders(self) -> list[Order]:
        return sorted(self._orders.values(), key=lambda o: o.created_at, reverse=True)

    async def lines_for_order(self, order_id: str) -> list[OrderLine]:
        return list(self._lines.get(order_id, []))

    async def update_order_if_state(
        self, order_id: str, expected: OrderState, **changes
    ) -> Optional[Order]:
        async with self._lock:
            current = self._orders.get(order_id)
            if current is None or current.state != expected:
                return None
            updated = replace(current, **changes)
            self._orders[order_id] = updated
            return updated

    async def assign_driver_if_unassigned(
        self, order_id: str, driver_id: str, **changes
    ) -> Optional[Order]:
        async with self._lock:
            current = self._orders.get(order_id)
            if (
                current is None
                or current.driver_id is not None
                or current.state != OrderState.CONFIRMED
            ):
                return None
            updated = replace(current, driver_id=driver_id, **changes)
            self._orders[order_id] = updated
            return updated

    async def create_bag(self, bag: Bag) -> Bag:
        self._bags[bag.id] = bag
        return bag

    async def get_bag(self, bag_id: str) -> Optional[Bag]:
        return self._bags.get(bag_id)

    async def bags_for_order(self, order_id: str) -> list[Bag]:
        bags = [b for b in self._bags.values() if b.order_id == order_id]
        return sorted(bags, key=lambda b: b.sequence)

    async def create_item(self, item: Item) -> Item:
        self._items[item.id] = item
        return item

    async def get_item(self, item_id: str) -> Optional[Item]:
        return self._items.get(item_id)

    async def append_scan(self, scan: Scan) -> Scan:
        async with self._lock:
            stored = replace(scan, sequence=next(self._scan_seq))
            self._scans.append(stored)
            return stored

    async def scans_for_order(self, order_id: str) -> list[Scan]:
        scans = [s for s in self._scans if s.order_id == order_id]
        return sorted(scans, key=lambda s: (s.created_at, s.sequence), reverse=True)

    async def create_subcontract(self, subcontract: Subcontract) -> Subcontract:
        self._subcontracts.append(subcontract)
        return subcontract

    async def subcontracts_for_order(self, order_id: str) -> list[Subcontract]:
        return [s for s in self._subcontracts if s.order_id == order_id]

    async def create_policy(self, policy: SplitPolicy) -> SplitPolicy:
        async with self._lock:
            if policy.is_active:
                self._deactivate_all()
            self._policies[policy.id] = policy
            return policy

    async def get_policy(self, policy_id: str) -> Optional[SplitPolicy]:
        return self._policies.get(policy_id)

    async def list_policies(self) -> list[SplitPolicy]:
        return sorted(self._policies.values(), key=lambda p: p.created_at, reverse=True)

    async def active_policy(self) -> Optional[SplitPolicy]:
        return self._find_active()

    async def activate_policy(self, policy_id: str) -> Optional[SplitPolicy]:
        async with self._lock:
            policy = self._policies.get(policy_id)
            if policy is None:
                return None
            self._deactivate_all()
            activated = replace(policy, is_active=True)
            self._policies[policy_id] = activated
            return activated

    async def order_and_active_policy(
        self, order_id: str
    ) -> tuple[Optional[Order], Optional[SplitPolicy]]:
        async with self._lock:
            return self._orders.get(order_id), self._find_active()

    async def append_split(self, split: Split) -> Split:
        self._splits.append(split)
        return split

    async def splits_for_order(self, order_id: str) -> list[Split]:
        return [s for s in self._splits if s.order_id == order_id]

    async def list_splits(self) -> list[Split]:
        return sorted(self._splits, key=lambda s: s.created_at, reverse=True)

    async def create_invoice_if_absent(
        self, order_id: str, build: Callable[[str], Invoice]
    ) -> tuple[Invoice, bool]:
        async with self._lock:
            existing_id = self._invoice_by_order.get(order_id)
            if existing_id is not None:
                return self._invoices[existing_id], False
            invoice = build(f"INV-{next(self._invoice_seq):06d}")
            self._invoices[invoice.id] = invoice
            self._invoice_by_order[order_id] = invoice.id
            return invoice, True

    async def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        return self._invoices.get(invoice_id)

    async def invoice_for_order(self, order_id: str) -> Optional[Invoice]:
        invoice_id = self._invoice_by_order.get(order_id)
        return self._invoices.get(invoice_id) if invoice_id else None

    async def update_invoice_if_status(
        self, invoice_id: str, expected: InvoiceStatus, **changes
    ) -> Optional[Invoice]:
        async with self._lock:
            current = self._invoices.get(invoice_id)
            if current is None or current.status != expected:
                return None
            updated = replace(current, **changes)
            self._invoices[invoice_id] = updated
            return updated

    def _find_active(self) -> Optional[SplitPolicy]:
        for policy in self._policies.values():
            if policy.is_active:
                return policy
        return None

    def _deactivate_all(self) -> None:
        for pid, policy in self._policies.items():
            if policy.is_active:
                self._policies[pid] = replace(policy, is_active=False)
