"""Server-side cart snapshots."""

import uuid
from datetime import datetime

from libs.cart.store import CART_VERSION
from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column


class StoredCart(Base):
    """A cart persisted as its snapshot state (same shape clients store locally)."""

    __tablename__ = "store_carts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    version: Mapped[int] = mapped_column(Integer, default=CART_VERSION)
    state: Mapped[dict] = mapped_column(JSONType, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<StoredCart {self.id} items={len((self.state or {}).get('items', []))}>"
