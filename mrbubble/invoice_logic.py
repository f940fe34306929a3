"""Invoice generation and payment status."""

from __future__ import annotations

from typing import Optional

import structlog

from .errors import InvalidTransitionError, errmsg
from .models import Invoice, InvoiceStatus, new_id, utcnow
from .pricing import vat_cents
from .store import Store
from .validation import require_found


class InvoiceLogic:
    def __init__(self, store: Store, log: Optional[structlog.BoundLogger] = None):
        self.store = store
        self.log = log or structlog.get_logger()

    async def create_invoice(self, order_id: str) -> Invoice:
        """Return the order's invoice, creating it on first call.

        Amounts are a snapshot of the order subtotal at creation time.
        """
        order = require_found(await self.store.get_order(order_id), errmsg.ORDER_NOT_FOUND)
        vat = vat_cents(order.subtotal_cents)

        def build(number: str) -> Invoice:
            return Invoice(
                id=new_id(),
                order_id=order.id,
                invoice_number=number,
                subtotal_cents=order.subtotal_cents,
                vat_cents=vat,
                total_cents=order.subtotal_cents + vat,
                currency=order.currency,
            )

        invoice, created = await self.store.create_invoice_if_absent(order.id, build)
        if created:
            self.log.info(
                "invoice_created",
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                order_id=order.id,
                total_cents=invoice.total_cents,
            )
        return invoice

    async def invoice_for_order(self, order_id: str) -> Invoice:
        return require_found(
            await self.store.invoice_for_order(order_id), errmsg.INVOICE_NOT_FOUND
        )

    async def get(self, invoice_id: str) -> Invoice:
        return require_found(await self.store.get_invoice(invoice_id), errmsg.INVOICE_NOT_FOUND)

    async def mark_paid(self, invoice_id: str) -> Invoice:
        return await self._settle(invoice_id, InvoiceStatus.PAID, paid_at=utcnow())

    async def cancel(self, invoice_id: str) -> Invoice:
        return await self._settle(invoice_id, InvoiceStatus.CANCELLED, cancelled_at=utcnow())

    async def _settle(self, invoice_id: str, status: InvoiceStatus, **stamp) -> Invoice:
        invoice = await self.get(invoice_id)
        updated = None
        if invoice.is_pending():
            updated = await self.store.update_invoice_if_status(
                invoice_id, InvoiceStatus.PENDING, status=status, **stamp
            )
        if updated is None:
            current = await self.get(invoice_id)
            raise InvalidTransitionError(current.status.value, status.value)
        self.log.info(
            "invoice_status_changed",
            invoice_id=invoice_id,
            status=status.value,
        )
        return updated
