"""Store the editor edge style on graph documents

Revision ID: 20241026_000002
Revises: 20241019_000001
Create Date: 2024-10-26

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '20241026_000002'
down_revision: Union[str, None] = '20241019_000001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        'graph_documents',
        sa.Column('edge_type', sa.String(50), nullable=False, server_default='default'),
    )


def downgrade() -> None:
    op.drop_column('graph_documents', 'edge_type')
