"""Custody scan recording.

Scans are evidence, not commands: recording never checks or changes order
state. :meth:`ScanLogic.ingest` is the boundary entry point that records a
scan and then lets the order lifecycle react to it.
"""

from __future__ import annotations

from typing import Optional

import structlog

from .errors import ForbiddenError, InvalidInputError, errmsg
from .models import (
    Bag,
    Item,
    Order,
    Party,
    Scan,
    ScanType,
    UserRole,
    new_id,
    utcnow,
)
from .order_logic import OrderLogic
from .pricing import to_decimal
from .qr import (
    LABEL_PREFIX,
    bag_qr_payload,
    parse_qr_payload,
    qr_payload,
    verify_order_label,
)
from .store import Store
from .validation import (
    require_found,
    require_geo,
    require_non_negative,
    require_positive,
    require_present,
)

T = ScanType

ALLOWED_SCANS_BY_ROLE: dict[UserRole, frozenset[ScanType]] = {
    UserRole.DRIVER: frozenset(
        {T.PICKUP, T.DELIVERY, T.HANDOFF_TO_SHOP, T.HANDOFF_TO_DRIVER}
    ),
    UserRole.SHOP: frozenset(
        {
            T.INTAKE,
            T.QC,
            T.PACK,
            T.HANDOFF_TO_SHOP,
            T.HANDOFF_TO_PROCESSING,
            T.HANDOFF_TO_DRIVER,
        }
    ),
    UserRole.FRANCHISE: frozenset(),
    UserRole.ADMIN: frozenset(ScanType),
    UserRole.CUSTOMER: frozenset(),
}


def parse_scan_type(value) -> ScanType:
    try:
        return ScanType(value)
    except ValueError as e:
        raise InvalidInputError(f"Unknown scan type: {value!r}", e) from e


def parse_role(value) -> UserRole:
    try:
        return UserRole(value)
    except ValueError as e:
        raise InvalidInputError(f"Unknown role: {value!r}", e) from e


def _party(value) -> Optional[Party]:
    if value is None or isinstance(value, Party):
        return value
    try:
        return Party(type=str(value["type"]), id=str(value["id"]))
    except (KeyError, TypeError) as e:
        raise InvalidInputError("Party needs a type and an id", e) from e


def _geo(value) -> Optional[tuple[float, float]]:
    if value is None:
        return None
    if isinstance(value, dict):
        return require_geo(value.get("lat"), value.get("lng"))
    try:
        lat, lng = value
    except (TypeError, ValueError) as e:
        raise InvalidInputError(errmsg.INVALID_GEO, e) from e
    return require_geo(lat, lng)


class ScanLogic:
    def __init__(
        self,
        store: Store,
        orders: OrderLogic,
        log: Optional[structlog.BoundLogger] = None,
        label_secret: Optional[str] = None,
    ):
        self.store = store
        self.orders = orders
        self.log = log or structlog.get_logger()
        self.label_secret = label_secret

    async def record_scan(
        self,
        type,
        order_id: Optional[str] = None,
        bag_id: Optional[str] = None,
        item_id: Optional[str] = None,
        geo=None,
        photo_url: Optional[str] = None,
        signature: Optional[str] = None,
        notes: str = "",
        scanned_by: str = "",
        scanned_by_role=UserRole.ADMIN,
        from_party=None,
        to_party=None,
        weight_kg=None,
    ) -> Scan:
        """Append a scan. Never updates an existing one."""
        scan_type = parse_scan_type(type)
        role = parse_role(scanned_by_role)
        require_present(scanned_by, "Scanner ID is required")
        if scan_type not in ALLOWED_SCANS_BY_ROLE[role]:
            raise ForbiddenError(f"{role.value} role cannot perform {scan_type.value} scans")

        coords = _geo(geo)
        weight = None
        if weight_kg is not None:
            try:
                weight = to_decimal(weight_kg)
                require_non_negative(weight, "Weight cannot be negative")
            except (ArithmeticError, TypeError, ValueError) as e:
                raise InvalidInputError(f"Invalid weight: {weight_kg!r}", e) from e

        order_id, bag_id = await self._resolve(order_id, bag_id, item_id)

        scan = await self.store.append_scan(
            Scan(
                id=new_id(),
                type=scan_type,
                order_id=order_id,
                bag_id=bag_id,
                item_id=item_id,
                scanned_by=scanned_by,
                scanned_by_role=role,
                latitude=coords[0] if coords else None,
                longitude=coords[1] if coords else None,
                photo_url=photo_url or None,
                signature=signature or None,
                notes=notes or "",
                from_party=_party(from_party),
                to_party=_party(to_party),
                weight_kg=weight,
                created_at=utcnow(),
            )
        )
        self.log.info(
            "scan_recorded",
            scan_id=scan.id,
            scan_type=scan_type.value,
            order_id=order_id,
            bag_id=bag_id,
            item_id=item_id,
            scanned_by=scanned_by,
        )
        return scan

    async def ingest(self, payload: dict) -> tuple[Scan, Optional[Order]]:
        """Record a scan from a boundary payload, then apply it to the order.

        ``qr`` may stand in for order_id, bag_id or item_id, either as an
        entity reference or as a signed order label.
        """
        order_id = payload.get("order_id")
        bag_id = payload.get("bag_id")
        item_id = payload.get("item_id")
        qr = payload.get("qr")
        if qr is not None and not isinstance(qr, str):
            raise InvalidInputError(errmsg.MALFORMED_QR)
        if qr and qr.startswith(LABEL_PREFIX):
            if self.label_secret is None:
                raise InvalidInputError("Order labels are not accepted without a signing key")
            label = verify_order_label(qr, self.label_secret)
            order_id = self._same_order(order_id, label.order_id)
        elif qr:
            ref = parse_qr_payload(qr)
            if ref.kind == "order":
                order_id = self._same_order(order_id, ref.id)
            elif ref.kind == "item":
                item_id = ref.id
            else:
                bag_id = await self._bag_id_for_ref(ref.id)

        scan = await self.record_scan(
            payload.get("type"),
            order_id=order_id,
            bag_id=bag_id,
            item_id=item_id,
            geo=payload.get("geo"),
            photo_url=payload.get("photo_url"),
            signature=payload.get("signature"),
            notes=payload.get("notes") or "",
            scanned_by=payload.get("scanned_by", ""),
            scanned_by_role=payload.get("scanned_by_role"),
            from_party=payload.get("from_party"),
            to_party=payload.get("to_party"),
            weight_kg=payload.get("weight_kg"),
        )
        order = await self.orders.apply_scan(scan)
        return scan, order

    async def scans_for_order(self, order_id: str) -> list[Scan]:
        """Audit trail, newest first."""
        await self.orders.get(order_id)
        return await self.store.scans_for_order(order_id)

    async def register_bags(self, order_id: str, sequences: list[int]) -> list[Bag]:
        await self.orders.get(order_id)
        taken = {b.sequence for b in await self.store.bags_for_order(order_id)}
        bags = []
        for seq in sequences:
            if isinstance(seq, bool) or not isinstance(seq, int):
                raise InvalidInputError(f"Bag sequence must be an integer: {seq!r}")
            require_positive(seq, "Bag sequence must be positive")
            if seq in taken:
                raise InvalidInputError(f"Bag {seq} already registered for order {order_id}")
            taken.add(seq)
            bags.append(
                await self.store.create_bag(
                    Bag(
                        id=new_id(),
                        order_id=order_id,
                        sequence=seq,
                        qr_code=bag_qr_payload(order_id, seq),
                    )
                )
            )
        self.log.info("bags_registered", order_id=order_id, count=len(bags))
        return bags

    async def register_item(self, bag_id: str, description: str = "") -> Item:
        bag = require_found(await self.store.get_bag(bag_id), errmsg.BAG_NOT_FOUND)
        item_id = new_id()
        item = await self.store.create_item(
            Item(
                id=item_id,
                bag_id=bag.id,
                order_id=bag.order_id,
                description=description,
                qr_code=qr_payload("item", item_id),
            )
        )
        self.log.info("item_registered", item_id=item.id, bag_id=bag.id)
        return item

    async def _resolve(
        self,
        order_id: Optional[str],
        bag_id: Optional[str],
        item_id: Optional[str],
    ) -> tuple[str, Optional[str]]:
        """Check every reference exists and that they agree on the order."""
        if not (order_id or bag_id or item_id):
            raise InvalidInputError(errmsg.ORDER_REQUIRED)

        if item_id:
            item = require_found(await self.store.get_item(item_id), errmsg.ITEM_NOT_FOUND)
            if bag_id and bag_id != item.bag_id:
                raise InvalidInputError(f"Item {item_id} is not in bag {bag_id}")
            bag_id = item.bag_id
            order_id = self._same_order(order_id, item.order_id)

        if bag_id:
            bag = require_found(await self.store.get_bag(bag_id), errmsg.BAG_NOT_FOUND)
            order_id = self._same_order(order_id, bag.order_id)

        await self.orders.get(order_id)
        return order_id, bag_id

    @staticmethod
    def _same_order(claimed: Optional[str], actual: str) -> str:
        if claimed and claimed != actual:
            raise InvalidInputError(f"Reference belongs to order {actual}, not {claimed}")
        return actual

    async def _bag_id_for_ref(self, ref_id: str) -> str:
        # Bag labels encode "{order_id}/{sequence}".
        order_id, _, seq = ref_id.rpartition("/")
        if order_id and seq.isdigit():
            for bag in await self.store.bags_for_order(order_id):
                if bag.sequence == int(seq):
                    return bag.id
        return ref_id
