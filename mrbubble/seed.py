"""Default catalogue, shops and split policy for a fresh store."""

from typing import Optional

import structlog

from .models import Service, Shop, SplitPolicy
from .split_logic import SplitLogic
from .store import Store

SERVICES = [
    Service(
        id="svc-laundry-kg",
        service_code="svc_laundry_kg",
        name="Laundry (per kg)",
        description="Regular washing and folding",
        unit_price_cents=500,
        unit="kg",
    ),
    Service(
        id="svc-dry-clean",
        service_code="svc_dry_clean",
        name="Dry Cleaning",
        description="Professional dry cleaning",
        unit_price_cents=1200,
    ),
    Service(
        id="svc-shirt-press",
        service_code="svc_shirt_press",
        name="Shirt Press",
        description="Professional shirt pressing",
        unit_price_cents=350,
    ),
    Service(
        id="svc-iron",
        service_code="svc_iron",
        name="Ironing Service",
        description="Complete ironing service",
        unit_price_cents=800,
        unit="kg",
    ),
]

SHOPS = [
    Shop(
        id="shop-dublin-central",
        name="Dublin Central Laundry",
        address="123 O'Connell Street",
        city="Dublin",
        eircode="D01 XY45",
        contact_email="dublin@mrbubbles.ie",
        contact_phone="+353 1 234 5678",
    ),
    Shop(
        id="shop-drogheda-express",
        name="Drogheda Express Clean",
        address="45 West Street",
        city="Drogheda",
        eircode="A92 X7Y8",
        contact_email="drogheda@mrbubbles.ie",
        contact_phone="+353 41 987 6543",
    ),
    Shop(
        id="shop-cork-processing",
        name="Cork Processing Center",
        address="78 Industrial Estate",
        city="Cork",
        eircode="T12 AB34",
        contact_email="cork@mrbubbles.ie",
        contact_phone="+353 21 456 7890",
        is_processing_center=True,
    ),
]

DEFAULT_POLICY_NAME = "Default EUR Policy"
DEFAULT_POLICY_VERSION = "2025-10-10"
DEFAULT_POLICY_JSON = {
    "currency": "EUR",
    "default": {
        "origin_shop_pct": "0.2",
        "processing_shop_pct": "0.55",
        "driver_pct": "0.1",
        "platform_pct": "0.15",
    },
    "caps": {"platform_min_cents": 50},
    "rounding": "HALF_UP_2DP",
}


async def seed_store(
    store: Store, log: Optional[structlog.BoundLogger] = None
) -> SplitPolicy:
    """Load the default data. Existing services, shops or policies are kept.

    Returns the active policy.
    """
    log = log or structlog.get_logger()
    for service in SERVICES:
        if await store.get_service_by_code(service.service_code) is None:
            await store.put_service(service)
    for shop in SHOPS:
        if await store.get_shop(shop.id) is None:
            await store.put_shop(shop)

    policy = await store.active_policy()
    if policy is None:
        policy = await SplitLogic(store, log).create_policy(
            DEFAULT_POLICY_NAME, DEFAULT_POLICY_VERSION, DEFAULT_POLICY_JSON
        )
    log.info(
        "store_seeded",
        services=len(SERVICES),
        shops=len(SHOPS),
        policy_id=policy.id,
    )
    return policy
