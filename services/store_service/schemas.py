"""Pydantic schemas for store service."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# ============================================================================
# CART SCHEMAS
# ============================================================================


class CartItemAdd(BaseModel):
    """A product row as the storefront has it (v4 or v5 shape) plus a quantity."""

    product: dict[str, Any]
    qty: int = 1


class CartResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    version: int
    items: list[dict[str, Any]]
    total_items: int = Field(..., serialization_alias="totalItems")
    total_price: float = Field(..., serialization_alias="totalPrice")


# ============================================================================
# QUOTE SCHEMAS
# ============================================================================


class QuoteItem(BaseModel):
    id: Any
    qty: int = 1


class QuoteRequest(BaseModel):
    items: list[QuoteItem] = []
    coupon: Optional[str] = None
    shipping: Optional[float] = None


class QuoteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subtotal: float
    discount_total: float = Field(..., serialization_alias="discountTotal")
    total: float
    applied_promotions: list[Any] = Field(
        default_factory=list, serialization_alias="appliedPromotions"
    )


# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class OrderCreateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., serialization_alias="orderId")
    order_document_id: str = Field(..., serialization_alias="orderDocumentId")
    order_numeric_id: Optional[str] = Field(None, serialization_alias="orderNumericId")
    order_number: Optional[str] = Field(None, serialization_alias="orderNumber")
    mp_external_reference: str = Field(..., serialization_alias="mpExternalReference")


class OrderStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: Optional[str] = Field(None, serialization_alias="orderId")
    order_number: Optional[str] = Field(None, serialization_alias="orderNumber")
    order_status: Optional[str] = Field(None, serialization_alias="orderStatus")


class OrderSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    order_number: Optional[str] = Field(None, serialization_alias="orderNumber")
    order_status: Optional[str] = Field(None, serialization_alias="orderStatus")
    total: Optional[float] = None
    created_at: Optional[str] = Field(None, serialization_alias="createdAt")
    shipping_address: Optional[Any] = Field(None, serialization_alias="shippingAddress")
    items: Optional[list[Any]] = None


# ============================================================================
# INVOICE SCHEMAS
# ============================================================================


class InvoiceGenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId", min_length=1)


class InvoiceGenerateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    already_exists: bool = Field(False, serialization_alias="alreadyExists")
    invoice_number: str = Field(..., serialization_alias="invoiceNumber")
    invoice_id: Optional[str] = Field(None, serialization_alias="invoiceId")
    pdf_url: Optional[str] = Field(None, serialization_alias="pdfUrl")


class InvoiceSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    number: Optional[str] = None
    issued_at: Optional[str] = Field(None, serialization_alias="issuedAt")
    total: Optional[float] = None
    currency: str = "ARS"
    pdf_url: Optional[str] = Field(None, serialization_alias="pdfUrl")
    order_number: Optional[str] = Field(None, serialization_alias="orderNumber")
