"""MarketplaceHandler: gRPC servicer for the marketplace core.

Requests and responses are ``google.protobuf.Struct`` messages, registered
through a generic handler so no generated stubs are needed. Domain errors
map to status codes:

- NotFoundError -> NOT_FOUND
- InvalidTransitionError -> FAILED_PRECONDITION
- AlreadyAssignedError -> ABORTED
- InvalidPolicyError, InvalidInputError, ValueError -> INVALID_ARGUMENT
- ForbiddenError -> PERMISSION_DENIED
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

import grpc
import structlog
from google.protobuf.struct_pb2 import Struct

from . import codec
from .errors import MarketplaceError
from .invoice_logic import InvoiceLogic
from .order_logic import OrderLogic
from .qr import sign_order_label, verify_order_label
from .scan_logic import ScanLogic
from .split_logic import SplitLogic
from .store import Store

SERVICE_NAME = "mrbubble.v1.Marketplace"

STATUS_BY_KIND = {
    "not_found": grpc.StatusCode.NOT_FOUND,
    "invalid_transition": grpc.StatusCode.FAILED_PRECONDITION,
    "already_assigned": grpc.StatusCode.ABORTED,
    "invalid_policy": grpc.StatusCode.INVALID_ARGUMENT,
    "invalid_input": grpc.StatusCode.INVALID_ARGUMENT,
    "forbidden": grpc.StatusCode.PERMISSION_DENIED,
}

Operation = Callable[[dict], Awaitable[Any]]


class MarketplaceHandler:
    def __init__(
        self,
        store: Store,
        label_secret: str,
        log: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.log = log or structlog.get_logger()
        self.label_secret = label_secret
        self.orders = OrderLogic(store, self.log)
        self.scans = ScanLogic(store, self.orders, self.log, label_secret)
        self.splits = SplitLogic(store, self.log)
        self.invoices = InvoiceLogic(store, self.log)

    def operations(self) -> dict[str, Operation]:
        return {
            "RecordScan": self.record_scan,
            "TransitionOrder": self.transition_order,
            "ClaimOrder": self.claim_order,
            "AvailableOrders": self.available_orders,
            "CalculateSplit": self.calculate_split,
            "CreateInvoice": self.create_invoice,
            "PayInvoice": self.pay_invoice,
            "CancelInvoice": self.cancel_invoice,
            "PlaceOrder": self.place_order,
            "SubcontractOrder": self.subcontract_order,
            "CreatePolicy": self.create_policy,
            "ActivatePolicy": self.activate_policy,
            "AuditTrail": self.audit_trail,
            "RegisterBags": self.register_bags,
            "OrderLabel": self.order_label,
            "VerifyLabel": self.verify_label,
        }

    def generic_handler(self) -> grpc.GenericRpcHandler:
        handlers = {
            name: grpc.unary_unary_rpc_method_handler(
                self._bind(operation),
                request_deserializer=Struct.FromString,
                response_serializer=Struct.SerializeToString,
            )
            for name, operation in self.operations().items()
        }
        return grpc.method_handlers_generic_handler(SERVICE_NAME, handlers)

    def _bind(self, operation: Operation):
        async def behaviour(request: Struct, context: grpc.aio.ServicerContext) -> Struct:
            return await self.dispatch(operation, request, context)

        return behaviour

    async def dispatch(
        self,
        operation: Operation,
        request: Struct,
        context: grpc.aio.ServicerContext,
    ) -> Struct:
        try:
            return codec.encode(await operation(codec.decode(request)))
        except MarketplaceError as e:
            self.log.info("request_rejected", kind=e.kind, error=str(e))
            await context.abort(STATUS_BY_KIND.get(e.kind, grpc.StatusCode.UNKNOWN), str(e))
        except ValueError as e:
            await context.abort(grpc.StatusCode.INVALID_ARGUMENT, str(e))

    async def record_scan(self, payload: dict):
        scan, _ = await self.scans.ingest(payload)
        return scan

    async def transition_order(self, payload: dict):
        return await self.orders.transition(
            codec.required(payload, "order_id"), codec.required(payload, "new_state")
        )

    async def claim_order(self, payload: dict):
        return await self.orders.claim(
            codec.required(payload, "order_id"), codec.required(payload, "driver_id")
        )

    async def available_orders(self, payload: dict):
        return {"orders": await self.orders.available_for_pickup()}

    async def calculate_split(self, payload: dict):
        order_id = codec.required(payload, "order_id")
        if payload.get("policy_id"):
            return await self.splits.calculate_split(order_id, payload["policy_id"])
        return await self.splits.calculate_active_split(order_id)

    async def create_invoice(self, payload: dict):
        return await self.invoices.create_invoice(codec.required(payload, "order_id"))

    async def pay_invoice(self, payload: dict):
        return await self.invoices.mark_paid(codec.required(payload, "invoice_id"))

    async def cancel_invoice(self, payload: dict):
        return await self.invoices.cancel(codec.required(payload, "invoice_id"))

    async def place_order(self, payload: dict):
        lines = []
        for line in payload.get("lines") or []:
            if not isinstance(line, dict):
                raise ValueError(f"Order line must be an object: {line!r}")
            lines.append(
                (codec.required(line, "service_code"), codec.required(line, "quantity"))
            )
        return await self.orders.place_order(
            customer_id=payload.get("customer_id", ""),
            address_line1=payload.get("address_line1", ""),
            city=payload.get("city", ""),
            lines=lines,
            payment_method=payload.get("payment_method"),
            address_line2=payload.get("address_line2", ""),
            eircode=payload.get("eircode", ""),
            notes=payload.get("notes", ""),
            pickup_date=payload.get("pickup_date", ""),
            time_window=payload.get("time_window", ""),
            customer_full_name=payload.get("customer_full_name", ""),
            customer_phone=payload.get("customer_phone", ""),
            delivery_fee_cents=payload.get("delivery_fee_cents", 0),
            tip_cents=payload.get("tip_cents", 0),
        )

    async def subcontract_order(self, payload: dict):
        return await self.orders.subcontract(
            codec.required(payload, "order_id"),
            codec.required(payload, "to_shop_id"),
            codec.required(payload, "processing_pct"),
            codec.optional_int(payload, "sla_hours"),
        )

    async def create_policy(self, payload: dict):
        return await self.splits.create_policy(
            payload.get("name", ""),
            payload.get("version", ""),
            codec.required(payload, "policy_json"),
            activate=payload.get("activate", True) is not False,
        )

    async def activate_policy(self, payload: dict):
        return await self.splits.activate_policy(codec.required(payload, "policy_id"))

    async def audit_trail(self, payload: dict):
        return {"scans": await self.scans.scans_for_order(codec.required(payload, "order_id"))}

    async def order_label(self, payload: dict):
        order = await self.orders.get(codec.required(payload, "order_id"))
        text = sign_order_label(
            self.label_secret,
            order_id=order.id,
            customer_id=order.customer_id,
            property_no=str(payload.get("property_no") or order.eircode),
            balance_due_eur=order.total_cents / 100,
            updated=order.updated_at.date().isoformat(),
        )
        return {"payload": text}

    async def verify_label(self, payload: dict):
        return verify_order_label(
            codec.required(payload, "payload"),
            self.label_secret,
            allow_unsigned=payload.get("allow_unsigned") is True,
        )

    async def register_bags(self, payload: dict):
        sequences = [
            codec.optional_int({"sequence": seq}, "sequence")
            for seq in payload.get("sequences") or []
        ]
        bags = await self.scans.register_bags(codec.required(payload, "order_id"), sequences)
        return {"bags": bags}
