"""Claimed order status transitions."""

import uuid
from datetime import datetime

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from sqlalchemy import DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column


class PaymentTransition(Base):
    """One row per (order, target status); inserting it claims the side effects.

    The unique constraint makes the insert a compare-and-swap: only the
    delivery that inserts first decrements stock, issues the invoice and
    sends the email.
    """

    __tablename__ = "payment_transitions"
    __table_args__ = (
        UniqueConstraint(
            "order_document_id",
            "target_status",
            name="uq_payment_transitions_order_status",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_document_id: Mapped[str] = mapped_column(String, index=True, nullable=False)
    target_status: Mapped[str] = mapped_column(String(32), nullable=False)
    mp_payment_id: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<PaymentTransition {self.order_document_id} -> {self.target_status}>"
