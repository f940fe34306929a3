"""QR payloads scanned by drivers and shops.

Two formats:

* entity references ``mrbl://{o|b|i}/{id}`` naming an order, bag or item;
* signed order labels ``mrbl://order?{json}`` carrying an HMAC-SHA256
  signature over the canonical JSON of the other fields.
"""

import hashlib
import hmac
import json
import re
import time
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidInputError, errmsg

SCHEME = "mrbl://"
LABEL_VERSION = 1
LABEL_PREFIX = f"{SCHEME}order?"

_PREFIXES = {"order": "o", "bag": "b", "item": "i"}
_KINDS = {prefix: kind for kind, prefix in _PREFIXES.items()}
_REF_PATTERN = re.compile(r"^mrbl://([obi])/(.+)$")
_LABEL_PATTERN = re.compile(r"^mrbl://order\?(.+)$", re.DOTALL)


@dataclass(frozen=True)
class QrRef:
    kind: str  # "order", "bag" or "item"
    id: str


@dataclass(frozen=True)
class OrderLabel:
    order_id: str
    customer_id: str
    property_no: str
    balance_due_eur: float
    updated: str
    ts: int
    signed: bool
    version: int = LABEL_VERSION


def qr_payload(kind: str, entity_id: str) -> str:
    prefix = _PREFIXES.get(kind)
    if prefix is None:
        raise InvalidInputError(f"Unknown QR entity kind: {kind!r}")
    if not entity_id:
        raise InvalidInputError(errmsg.MALFORMED_QR)
    return f"{SCHEME}{prefix}/{entity_id}"


def bag_qr_payload(order_id: str, sequence: int) -> str:
    return qr_payload("bag", f"{order_id}/{sequence}")


def parse_qr_payload(text: str) -> QrRef:
    match = _REF_PATTERN.match(text or "")
    if not match:
        raise InvalidInputError(f"{errmsg.MALFORMED_QR}: {text!r}")
    prefix, entity_id = match.groups()
    return QrRef(kind=_KINDS[prefix], id=entity_id)


def canonical_json(payload: dict) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _signature(payload: dict, secret: str) -> str:
    body = canonical_json({k: v for k, v in payload.items() if k != "sig"})
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


def sign_order_label(
    secret: str,
    order_id: str,
    customer_id: str,
    property_no: str,
    balance_due_eur: float,
    updated: str,
    ts: Optional[int] = None,
) -> str:
    """Build a signed ``mrbl://order?{json}`` label payload."""
    payload = {
        "v": LABEL_VERSION,
        "type": "order_label",
        "order_id": order_id,
        "customer_id": customer_id,
        "property_no": property_no,
        "balance_due_eur": balance_due_eur,
        "updated": updated,
        "ts": int(time.time()) if ts is None else ts,
    }
    payload["sig"] = _signature(payload, secret)
    return f"{LABEL_PREFIX}{canonical_json(payload)}"


def verify_order_label(text: str, secret: str, allow_unsigned: bool = False) -> OrderLabel:
    """Parse a label payload and check its signature.

    Raises InvalidInputError when the payload is malformed, unsigned (unless
    allowed) or its signature does not match.
    """
    match = _LABEL_PATTERN.match(text or "")
    if not match:
        raise InvalidInputError(f"{errmsg.MALFORMED_QR}: {text!r}")
    try:
        payload = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        raise InvalidInputError(errmsg.MALFORMED_QR, e) from e
    if not isinstance(payload, dict) or payload.get("type") != "order_label":
        raise InvalidInputError(errmsg.MALFORMED_QR)

    sig = payload.get("sig")
    if sig is None:
        if not allow_unsigned:
            raise InvalidInputError(errmsg.UNSIGNED_LABEL)
    elif not isinstance(sig, str) or not hmac.compare_digest(sig, _signature(payload, secret)):
        raise InvalidInputError(errmsg.TAMPERED_LABEL)

    try:
        return OrderLabel(
            order_id=str(payload["order_id"]),
            customer_id=str(payload["customer_id"]),
            property_no=str(payload.get("property_no", "")),
            balance_due_eur=float(payload.get("balance_due_eur", 0)),
            updated=str(payload.get("updated", "")),
            ts=int(payload.get("ts", 0)),
            signed=sig is not None,
            version=int(payload.get("v", LABEL_VERSION)),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidInputError(errmsg.MALFORMED_QR, e) from e
