"""create store_carts and payment_transitions

Revision ID: 3f9c2a7d1b10
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = '3f9c2a7d1b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema - Add cart snapshots and claimed payment transitions."""

    op.create_table(
        'store_carts',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('state', sa.JSON().with_variant(JSONB(), 'postgresql'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'payment_transitions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('order_document_id', sa.String(), nullable=False),
        sa.Column('target_status', sa.String(length=32), nullable=False),
        sa.Column('mp_payment_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'order_document_id',
            'target_status',
            name='uq_payment_transitions_order_status',
        ),
    )
    op.create_index(
        op.f('ix_payment_transitions_order_document_id'),
        'payment_transitions',
        ['order_document_id'],
        unique=False,
    )


def downgrade() -> None:
    """Downgrade schema - Drop cart snapshots and payment transitions."""
    op.drop_index(
        op.f('ix_payment_transitions_order_document_id'),
        table_name='payment_transitions',
    )
    op.drop_table('payment_transitions')
    op.drop_table('store_carts')
