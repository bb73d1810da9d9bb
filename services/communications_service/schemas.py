"""Pydantic schemas for communications service."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class OrderConfirmationRequest(BaseModel):
    """What the payments webhook knows about a freshly paid order."""

    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    name: Optional[str] = None
    order_number: Optional[str] = Field(None, alias="orderNumber")
    total: Any = None
    items: list[Any] = Field(default_factory=list)
    phone: Optional[str] = None
    shipping_address: Any = Field(None, alias="shippingAddress")
    mp_payment_id: Optional[str] = Field(None, alias="mpPaymentId")
    invoice_number: Optional[str] = Field(None, alias="invoiceNumber")
    invoice_pdf_url: Optional[str] = Field(None, alias="invoicePdfUrl")
    invoice_filename: Optional[str] = Field(None, alias="invoiceFilename")

    @property
    def idempotency_key(self) -> str:
        key = f"order-confirmation/{self.order_number}"
        return f"{key}/{self.mp_payment_id}" if self.mp_payment_id else key
