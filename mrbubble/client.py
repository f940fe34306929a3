"""Async client for the marketplace service."""

from __future__ import annotations

import os
from typing import Optional

import grpc
from google.protobuf.struct_pb2 import Struct

from . import codec
from .handler import SERVICE_NAME


class GRPCError(Exception):
    """gRPC error from the server."""

    def __init__(self, cause: grpc.RpcError):
        super().__init__("grpc error")
        self.message = "grpc error"
        self.cause = cause

    def __str__(self) -> str:
        return f"{self.message}: {self.code.name}: {self.details}"

    @property
    def code(self) -> grpc.StatusCode:
        return self.cause.code()

    @property
    def details(self) -> str:
        return self.cause.details()

    def is_not_found(self) -> bool:
        return self.code == grpc.StatusCode.NOT_FOUND

    def is_precondition_failed(self) -> bool:
        return self.code == grpc.StatusCode.FAILED_PRECONDITION

    def is_invalid_argument(self) -> bool:
        return self.code == grpc.StatusCode.INVALID_ARGUMENT

    def is_already_assigned(self) -> bool:
        """True when a driver claim lost the race; poll for another order."""
        return self.code == grpc.StatusCode.ABORTED

    def is_forbidden(self) -> bool:
        return self.code == grpc.StatusCode.PERMISSION_DENIED


def _target(endpoint: str) -> str:
    # grpc uses unix:path for relative sockets, unix:///path for absolute ones
    if endpoint.startswith("./"):
        return f"unix:{endpoint}"
    if endpoint.startswith("/"):
        return f"unix://{endpoint}"
    return endpoint


class MarketplaceClient:
    """Client for the Marketplace service. Payloads are plain dicts."""

    def __init__(self, channel: grpc.aio.Channel):
        self._channel = channel

    @classmethod
    def connect(cls, endpoint: str) -> "MarketplaceClient":
        return cls(grpc.aio.insecure_channel(_target(endpoint)))

    @classmethod
    def from_env(
        cls, env_var: str = "MRBUBBLE_ENDPOINT", default: str = "localhost:50061"
    ) -> "MarketplaceClient":
        return cls.connect(os.environ.get(env_var, default))

    async def call(self, method: str, payload: Optional[dict] = None) -> dict:
        rpc = self._channel.unary_unary(
            f"/{SERVICE_NAME}/{method}",
            request_serializer=Struct.SerializeToString,
            response_deserializer=Struct.FromString,
        )
        try:
            response = await rpc(codec.encode(payload or {}))
        except grpc.RpcError as e:
            raise GRPCError(e) from e
        return codec.decode(response)

    async def place_order(self, **checkout) -> dict:
        return await self.call("PlaceOrder", checkout)

    async def record_scan(self, **scan) -> dict:
        return await self.call("RecordScan", scan)

    async def transition_order(self, order_id: str, new_state: str) -> dict:
        return await self.call("TransitionOrder", {"order_id": order_id, "new_state": new_state})

    async def claim_order(self, order_id: str, driver_id: str) -> dict:
        return await self.call("ClaimOrder", {"order_id": order_id, "driver_id": driver_id})

    async def available_orders(self) -> list[dict]:
        return (await self.call("AvailableOrders"))["orders"]

    async def subcontract_order(
        self, order_id: str, to_shop_id: str, processing_pct: float, sla_hours: Optional[int] = None
    ) -> dict:
        return await self.call(
            "SubcontractOrder",
            {
                "order_id": order_id,
                "to_shop_id": to_shop_id,
                "processing_pct": processing_pct,
                "sla_hours": sla_hours,
            },
        )

    async def register_bags(self, order_id: str, sequences: list[int]) -> list[dict]:
        response = await self.call("RegisterBags", {"order_id": order_id, "sequences": sequences})
        return response["bags"]

    async def audit_trail(self, order_id: str) -> list[dict]:
        return (await self.call("AuditTrail", {"order_id": order_id}))["scans"]

    async def calculate_split(self, order_id: str, policy_id: Optional[str] = None) -> dict:
        return await self.call("CalculateSplit", {"order_id": order_id, "policy_id": policy_id})

    async def create_policy(
        self, name: str, version: str, policy_json: dict, activate: bool = True
    ) -> dict:
        return await self.call(
            "CreatePolicy",
            {"name": name, "version": version, "policy_json": policy_json, "activate": activate},
        )

    async def activate_policy(self, policy_id: str) -> dict:
        return await self.call("ActivatePolicy", {"policy_id": policy_id})

    async def create_invoice(self, order_id: str) -> dict:
        return await self.call("CreateInvoice", {"order_id": order_id})

    async def pay_invoice(self, invoice_id: str) -> dict:
        return await self.call("PayInvoice", {"invoice_id": invoice_id})

    async def cancel_invoice(self, invoice_id: str) -> dict:
        return await self.call("CancelInvoice", {"invoice_id": invoice_id})

    async def order_label(self, order_id: str, property_no: str = "") -> str:
        response = await self.call("OrderLabel", {"order_id": order_id, "property_no": property_no})
        return response["payload"]

    async def verify_label(self, payload: str, allow_unsigned: bool = False) -> dict:
        return await self.call("VerifyLabel", {"payload": payload, "allow_unsigned": allow_unsigned})

    async def close(self) -> None:
        await self._channel.close()
