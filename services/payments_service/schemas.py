"""Pydantic schemas for payments service."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CreatePreferenceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: Optional[str] = Field(None, alias="orderId")
    # Only used when the stored order has none
    mp_external_reference: Optional[str] = Field(None, alias="mpExternalReference")


class PreferenceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    init_point: Optional[str] = None
    sandbox_init_point: Optional[str] = None
    mp_external_reference: str = Field(..., serialization_alias="mpExternalReference")
    order_id: str = Field(..., serialization_alias="orderId")


class WebhookAck(BaseModel):
    ok: bool = True
