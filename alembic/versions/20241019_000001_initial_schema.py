"""Initial database schema

Revision ID: 20241019_000001
Revises: 
Create Date: 2024-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '20241019_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create graph_documents table
    op.create_table(
        'graph_documents',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('parent_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('is_template', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('event_kind', sa.String(255), nullable=True),
        sa.Column('configuration', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['parent_id'], ['graph_documents.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_graph_documents_status', 'graph_documents', ['status'])
    op.create_index('ix_graph_documents_status_event_kind', 'graph_documents', ['status', 'event_kind'])

    # Create workflow_runs table
    op.create_table(
        'workflow_runs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('document_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('document_version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('event_kind', sa.String(255), nullable=False),
        sa.Column('current_node_id', sa.String(255), nullable=False),
        sa.Column('status', sa.String(50), nullable=False, server_default='RUNNING'),
        sa.Column('variables', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('history', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('resume_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('action_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['document_id'], ['graph_documents.id'], ondelete='RESTRICT'),
    )
    op.create_index('ix_workflow_runs_document_id', 'workflow_runs', ['document_id'])
    op.create_index('ix_workflow_runs_status', 'workflow_runs', ['status'])
    op.create_index('ix_workflow_runs_status_resume_at', 'workflow_runs', ['status', 'resume_at'])
    op.create_index('ix_workflow_runs_created_at', 'workflow_runs', ['created_at'])


def downgrade() -> None:
    op.drop_table('workflow_runs')
    op.drop_table('graph_documents')
