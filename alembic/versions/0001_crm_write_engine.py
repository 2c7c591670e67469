"""Add CRM connections, field mappings, form submissions and write jobs.

Revision ID: 0001_crm_write_engine
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_crm_write_engine'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    # ==========================================================================
    # crm_connections table
    # ==========================================================================
    op.create_table(
        'crm_connections',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('backend_type', sa.String(30), nullable=False),
        sa.Column('target_url', sa.Text(), nullable=True),
        sa.Column('config', JSON_TYPE, nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # ==========================================================================
    # crm_field_mappings table
    # ==========================================================================
    op.create_table(
        'crm_field_mappings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('form_id', sa.Uuid(), nullable=False),
        sa.Column('connection_id', sa.Uuid(), nullable=False),
        sa.Column('rules', JSON_TYPE, nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['connection_id'], ['crm_connections.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('form_id', 'connection_id', name='uq_crm_mapping_form_connection'),
    )
    op.create_index('ix_crm_field_mappings_form_id', 'crm_field_mappings', ['form_id'])

    # ==========================================================================
    # form_submissions table
    # ==========================================================================
    op.create_table(
        'form_submissions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('form_id', sa.Uuid(), nullable=False),
        sa.Column('data', JSON_TYPE, nullable=False),
        sa.Column('crm_sync_status', sa.String(20), server_default=sa.text("'not_configured'"), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_form_submissions_form_id', 'form_submissions', ['form_id'])

    # ==========================================================================
    # crm_write_jobs table
    # ==========================================================================
    op.create_table(
        'crm_write_jobs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('submission_id', sa.Uuid(), nullable=False),
        sa.Column('connection_id', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column('retry_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('max_retries', sa.Integer(), server_default=sa.text('3'), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('screenshot_reference', sa.Text(), nullable=True),
        sa.Column('external_record_id', sa.String(255), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['submission_id'], ['form_submissions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['connection_id'], ['crm_connections.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('submission_id', 'connection_id', name='uq_crm_job_submission_connection'),
    )
    op.create_index(
        'idx_crm_jobs_pending',
        'crm_write_jobs',
        ['status', 'created_at'],
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index('idx_crm_jobs_pending', table_name='crm_write_jobs')
    op.drop_table('crm_write_jobs')
    op.drop_index('ix_form_submissions_form_id', table_name='form_submissions')
    op.drop_table('form_submissions')
    op.drop_index('ix_crm_field_mappings_form_id', table_name='crm_field_mappings')
    op.drop_table('crm_field_mappings')
    op.drop_table('crm_connections')
