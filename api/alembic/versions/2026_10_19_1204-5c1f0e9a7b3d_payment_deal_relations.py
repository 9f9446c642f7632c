"""payment deal relations

Revision ID: 5c1f0e9a7b3d
Revises:
Create Date: 2026-10-19 12:04:11.402519

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5c1f0e9a7b3d'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'payment_deal_relations',
        sa.Column('payment_id', sa.String(), nullable=False),
        sa.Column('deal_id', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('payment_id')
    )
    op.create_index(op.f('ix_payment_deal_relations_deal_id'), 'payment_deal_relations', ['deal_id'], unique=False)
    op.create_index(op.f('ix_payment_deal_relations_created_at'), 'payment_deal_relations', ['created_at'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_payment_deal_relations_created_at'), table_name='payment_deal_relations')
    op.drop_index(op.f('ix_payment_deal_relations_deal_id'), table_name='payment_deal_relations')
    op.drop_table('payment_deal_relations')
