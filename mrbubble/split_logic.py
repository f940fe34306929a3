"""Revenue split engine and split policy authoring.

Shares are computed with Decimal arithmetic on integer cents. Whatever the
rounding leaves over goes to the platform, so a split conserves the order
total unless a platform floor in override mode pushes it over.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import (
    ROUND_DOWN,
    ROUND_HALF_EVEN,
    ROUND_HALF_UP,
    ROUND_UP,
    Decimal,
    InvalidOperation,
)
from typing import Optional

import structlog

from .errors import InvalidPolicyError, errmsg
from .models import FloorMode, Order, Split, SplitPolicy, new_id
from .pricing import round_cents, to_decimal
from .store import Store
from .validation import require_found, require_present

PCT_FIELDS = ("origin_shop_pct", "processing_shop_pct", "driver_pct", "platform_pct")
PCT_TOLERANCE = Decimal("0.0001")

ROUNDING_MODES = {
    "HALF_UP": ROUND_HALF_UP,
    "HALF_EVEN": ROUND_HALF_EVEN,
    "DOWN": ROUND_DOWN,
    "UP": ROUND_UP,
}


def rounding_for(rule: str) -> str:
    """Decimal rounding constant for a policy rule such as ``HALF_UP_2DP``.

    The precision suffix is informational: shares are always whole cents.
    """
    base = (rule or "").upper()
    if base.endswith("_2DP"):
        base = base[: -len("_2DP")]
    try:
        return ROUNDING_MODES[base]
    except KeyError as e:
        raise InvalidPolicyError(f"Unknown rounding rule: {rule!r}", e) from e


@dataclass(frozen=True)
class PolicyTerms:
    """Validated contents of a policy document."""

    origin_shop_pct: Decimal
    processing_shop_pct: Decimal
    driver_pct: Decimal
    platform_pct: Decimal
    platform_min_cents: int
    rounding: str
    floor_mode: FloorMode
    currency: str


def _pct(value, name: str) -> Decimal:
    if value is None:
        raise InvalidPolicyError(f"Missing percentage: {name}")
    if isinstance(value, bool):
        raise InvalidPolicyError(f"Percentage {name} must be numeric")
    try:
        pct = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidPolicyError(f"Percentage {name} must be numeric", e) from e
    if not pct.is_finite() or pct < 0 or pct > 1:
        raise InvalidPolicyError(f"Percentage {name} must be between 0 and 1")
    return pct


def parse_policy_json(policy_json: dict) -> PolicyTerms:
    """Validate a policy document.

    Shape::

        {"currency": "EUR",
         "default": {"origin_shop_pct": 0.2, "processing_shop_pct": 0.55,
                     "driver_pct": 0.1, "platform_pct": 0.15},
         "caps": {"platform_min_cents": 50},
         "rounding": "HALF_UP_2DP",
         "floor_mode": "override"}
    """
    if not isinstance(policy_json, dict):
        raise InvalidPolicyError("Policy document must be an object")
    shares = policy_json.get("default")
    if not isinstance(shares, dict):
        raise InvalidPolicyError("Policy document needs a 'default' share table")

    pcts = {name: _pct(shares.get(name), name) for name in PCT_FIELDS}
    if abs(sum(pcts.values()) - 1) > PCT_TOLERANCE:
        raise InvalidPolicyError(f"{errmsg.PCT_SUM}, got {sum(pcts.values())}")

    caps = policy_json.get("caps") or {}
    if not isinstance(caps, dict):
        raise InvalidPolicyError("Policy 'caps' must be an object")
    floor = caps.get("platform_min_cents", 0)
    if floor is None:
        floor = 0
    if isinstance(floor, float) and floor.is_integer():
        floor = int(floor)
    if isinstance(floor, bool) or not isinstance(floor, int) or floor < 0:
        raise InvalidPolicyError(f"platform_min_cents must be a non-negative integer: {floor!r}")

    rounding = policy_json.get("rounding") or "HALF_UP_2DP"
    rounding_for(rounding)

    try:
        floor_mode = FloorMode(policy_json.get("floor_mode") or FloorMode.OVERRIDE.value)
    except ValueError as e:
        raise InvalidPolicyError(f"Unknown floor mode: {policy_json.get('floor_mode')!r}", e) from e

    return PolicyTerms(
        platform_min_cents=floor,
        rounding=rounding,
        floor_mode=floor_mode,
        currency=str(policy_json.get("currency") or "EUR"),
        **pcts,
    )


@dataclass(frozen=True)
class Shares:
    origin_shop: int
    processing_shop: int
    driver: int
    platform: int
    remainder: int = 0
    floor_applied: bool = False
    audit_note: str = ""

    @property
    def total(self) -> int:
        return self.origin_shop + self.processing_shop + self.driver + self.platform


def _deduct_pro_rata(shares: list[int], budget: int) -> list[int]:
    """Scale ``shares`` down to sum to ``budget``.

    Largest remainder: floor every scaled share, then hand the leftover cents
    to the largest fractional parts, ties to the larger share.
    """
    base = sum(shares)
    if base == 0:
        return [0] * len(shares)
    scaled = [Decimal(s) * budget / base for s in shares]
    floored = [int(x.to_integral_value(rounding=ROUND_DOWN)) for x in scaled]
    leftover = budget - sum(floored)
    order = sorted(
        range(len(shares)),
        key=lambda i: (scaled[i] - floored[i], shares[i]),
        reverse=True,
    )
    for i in order[:leftover]:
        floored[i] += 1
    return floored


def compute_shares(
    total_cents: int,
    pcts: dict[str, Decimal],
    platform_min_cents: int = 0,
    rounding: str = "HALF_UP_2DP",
    floor_mode: FloorMode = FloorMode.OVERRIDE,
) -> Shares:
    """Pure split computation, no persistence."""
    mode = rounding_for(rounding)
    total = Decimal(total_cents)
    origin = round_cents(total * pcts["origin_shop"], mode)
    processing = round_cents(total * pcts["processing_shop"], mode)
    driver = round_cents(total * pcts["driver"], mode)
    platform = round_cents(total * pcts["platform"], mode)

    remainder = total_cents - (origin + processing + driver + platform)
    if platform + remainder < 0:
        # Platform absorbs what it can; the rest comes off the other shares.
        remainder = -platform
        origin, processing, driver = _deduct_pro_rata(
            [origin, processing, driver], total_cents
        )
    platform += remainder

    if platform_min_cents <= 0 or platform >= platform_min_cents:
        return Shares(origin, processing, driver, platform, remainder)

    if floor_mode == FloorMode.CONSERVE:
        target = min(platform_min_cents, total_cents)
        if platform >= target:
            return Shares(origin, processing, driver, platform, remainder)
        shortfall = target - platform
        origin, processing, driver = _deduct_pro_rata(
            [origin, processing, driver], total_cents - target
        )
        note = (
            f"Platform floor {platform_min_cents} applied in conserve mode: "
            f"{shortfall} cents deducted pro rata from the other shares"
        )
        return Shares(origin, processing, driver, target, remainder, True, note)

    overrun = origin + processing + driver + platform_min_cents - total_cents
    note = (
        f"Platform floor {platform_min_cents} overrides computed share {platform}: "
        f"split exceeds order total {total_cents} by {overrun} cents"
    )
    return Shares(origin, processing, driver, platform_min_cents, remainder, True, note)


class SplitLogic:
    def __init__(self, store: Store, log: Optional[structlog.BoundLogger] = None):
        self.store = store
        self.log = log or structlog.get_logger()

    async def calculate_split(self, order_id: str, policy_id: str) -> Split:
        order = require_found(await self.store.get_order(order_id), errmsg.ORDER_NOT_FOUND)
        policy = require_found(await self.store.get_policy(policy_id), errmsg.POLICY_NOT_FOUND)
        return await self._split(order, policy)

    async def calculate_active_split(self, order_id: str) -> Split:
        """Split against the policy active at the moment of the read."""
        order, policy = await self.store.order_and_active_policy(order_id)
        require_found(order, errmsg.ORDER_NOT_FOUND)
        require_found(policy, errmsg.NO_ACTIVE_POLICY)
        return await self._split(order, policy)

    async def _split(self, order: Order, policy: SplitPolicy) -> Split:
        shares = compute_shares(
            order.total_cents,
            policy.percentages(),
            policy.platform_min_cents,
            policy.rounding,
            policy.floor_mode,
        )
        split = await self.store.append_split(
            Split(
                id=new_id(),
                order_id=order.id,
                policy_id=policy.id,
                origin_shop_cents=shares.origin_shop,
                processing_shop_cents=shares.processing_shop,
                driver_cents=shares.driver,
                platform_cents=shares.platform,
                origin_shop_pct=policy.origin_shop_pct,
                processing_shop_pct=policy.processing_shop_pct,
                driver_pct=policy.driver_pct,
                platform_pct=policy.platform_pct,
                order_total_cents=order.total_cents,
                rounding_remainder_cents=shares.remainder,
                floor_applied=shares.floor_applied,
                floor_mode=policy.floor_mode,
                audit_note=shares.audit_note,
            )
        )
        if not split.conserves_total():
            self.log.warning(
                "split_exceeds_order_total",
                order_id=order.id,
                policy_id=policy.id,
                order_total_cents=order.total_cents,
                split_total_cents=split.shares_total_cents,
                audit_note=split.audit_note,
            )
        self.log.info(
            "split_calculated",
            split_id=split.id,
            order_id=order.id,
            policy_id=policy.id,
            platform_cents=split.platform_cents,
            floor_applied=split.floor_applied,
        )
        return split

    async def create_policy(
        self, name: str, version: str, policy_json: dict, activate: bool = True
    ) -> SplitPolicy:
        require_present(name, "Policy name is required")
        require_present(version, "Policy version is required")
        terms = parse_policy_json(policy_json)
        policy = await self.store.create_policy(
            SplitPolicy(
                id=new_id(),
                name=name,
                version=version,
                origin_shop_pct=terms.origin_shop_pct,
                processing_shop_pct=terms.processing_shop_pct,
                driver_pct=terms.driver_pct,
                platform_pct=terms.platform_pct,
                currency=terms.currency,
                platform_min_cents=terms.platform_min_cents,
                rounding=terms.rounding,
                floor_mode=terms.floor_mode,
                is_active=activate,
                policy_json=policy_json,
            )
        )
        self.log.info(
            "policy_created",
            policy_id=policy.id,
            name=name,
            version=version,
            active=policy.is_active,
        )
        return policy

    async def activate_policy(self, policy_id: str) -> SplitPolicy:
        policy = require_found(await self.store.get_policy(policy_id), errmsg.POLICY_NOT_FOUND)
        parse_policy_json(policy.policy_json)
        activated = require_found(
            await self.store.activate_policy(policy_id), errmsg.POLICY_NOT_FOUND
        )
        self.log.info("policy_activated", policy_id=policy_id)
        return activated

    async def active_policy(self) -> SplitPolicy:
        return require_found(await self.store.active_policy(), errmsg.NO_ACTIVE_POLICY)

    async def list_policies(self) -> list[SplitPolicy]:
        return await self.store.list_policies()

    async def splits_for_order(self, order_id: str) -> list[Split]:
        return await self.store.splits_for_order(order_id)

    async def all_splits(self) -> list[Split]:
        return await self.store.list_splits()
