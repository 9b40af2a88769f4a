"""Create proposal and workflow tables

Revision ID: 001
Revises:
Create Date: 2026-10-19

WHY: Proposals, their items, templates and versions, plus the approval
chain, approval records, signature requests and the notification outbox
the workflow engine persists its state in.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create proposal and workflow tables.

    WHY: Status columns are plain strings (non-native enums) so adding a
    status never needs an ALTER TYPE.
    """
    op.create_table(
        'proposal_templates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('template_content', JSONB(), nullable=False),
        sa.Column('pricing_structure', JSONB(), nullable=True),
        sa.Column('validation_rules', JSONB(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_proposal_templates_id', 'proposal_templates', ['id'])
    op.create_index('ix_proposal_templates_org_id', 'proposal_templates', ['org_id'])

    op.create_table(
        'proposals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('template_id', sa.Integer(), nullable=True),
        sa.Column('proposal_number', sa.String(length=50), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('content', JSONB(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='draft'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('tax_rate_percent', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('global_discount_percent', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('final_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('valid_until', sa.DateTime(), nullable=True),
        sa.Column('terms_and_conditions', sa.Text(), nullable=True),
        sa.Column('payment_terms', sa.Text(), nullable=True),
        sa.Column('delivery_terms', sa.Text(), nullable=True),
        sa.Column('client_name', sa.String(length=255), nullable=True),
        sa.Column('owner_email', sa.String(length=255), nullable=True),
        sa.Column('validation_warnings', JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('accepted_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['template_id'], ['proposal_templates.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('proposal_number')
    )
    op.create_index('ix_proposals_id', 'proposals', ['id'])
    op.create_index('ix_proposals_org_id', 'proposals', ['org_id'])
    op.create_index('ix_proposals_client_id', 'proposals', ['client_id'])
    op.create_index('ix_proposals_org_status', 'proposals', ['org_id', 'status'])

    op.create_table(
        'proposal_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('proposal_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('quantity', sa.Numeric(12, 2), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_percent', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('item_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['proposal_id'], ['proposals.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_proposal_items_id', 'proposal_items', ['id'])
    op.create_index('ix_proposal_items_org_id', 'proposal_items', ['org_id'])
    op.create_index('ix_proposal_items_proposal_id', 'proposal_items', ['proposal_id'])

    op.create_table(
        'proposal_versions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('proposal_id', sa.Integer(), nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('content_snapshot', JSONB(), nullable=False),
        sa.Column('changes_summary', sa.Text(), nullable=True),
        sa.Column('change_type', sa.String(length=32), nullable=False, server_default='update'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['proposal_id'], ['proposals.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('proposal_id', 'version_number', name='uq_proposal_version')
    )
    op.create_index('ix_proposal_versions_id', 'proposal_versions', ['id'])
    op.create_index('ix_proposal_versions_org_id', 'proposal_versions', ['org_id'])
    op.create_index('ix_proposal_versions_proposal_id', 'proposal_versions', ['proposal_id'])

    op.create_table(
        'proposal_approval_chains',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('proposal_id', sa.Integer(), nullable=False),
        sa.Column('levels', JSONB(), nullable=False),
        sa.Column('parallel_approval', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('current_level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['proposal_id'], ['proposals.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('proposal_id')
    )
    op.create_index('ix_proposal_approval_chains_id', 'proposal_approval_chains', ['id'])
    op.create_index('ix_proposal_approval_chains_org_id', 'proposal_approval_chains', ['org_id'])

    op.create_table(
        'proposal_approvals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('proposal_id', sa.Integer(), nullable=False),
        sa.Column('approver_id', sa.Integer(), nullable=False),
        sa.Column('approver_email', sa.String(length=255), nullable=False),
        sa.Column('approver_name', sa.String(length=255), nullable=True),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.Column('timeout_at', sa.DateTime(), nullable=False),
        sa.Column('escalated_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['proposal_id'], ['proposals.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('proposal_id', 'level', 'approver_id', name='uq_approval_level_approver')
    )
    op.create_index('ix_proposal_approvals_id', 'proposal_approvals', ['id'])
    op.create_index('ix_proposal_approvals_org_id', 'proposal_approvals', ['org_id'])
    op.create_index('ix_proposal_approvals_proposal_id', 'proposal_approvals', ['proposal_id'])
    # WHY: The timeout sweep scans pending rows by timeout_at
    op.create_index('ix_proposal_approvals_status_timeout', 'proposal_approvals', ['status', 'timeout_at'])

    op.create_table(
        'proposal_signatures',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('proposal_id', sa.Integer(), nullable=False),
        sa.Column('signer_email', sa.String(length=255), nullable=False),
        sa.Column('signer_name', sa.String(length=255), nullable=False),
        sa.Column('signature_type', sa.String(length=32), nullable=False, server_default='electronic'),
        sa.Column('verification_code', sa.String(length=64), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('signed_at', sa.DateTime(), nullable=True),
        sa.Column('signature_data', JSONB(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        sa.Column('location_data', JSONB(), nullable=True),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('declined_at', sa.DateTime(), nullable=True),
        sa.Column('decline_reason', sa.Text(), nullable=True),
        sa.Column('expiry_notified_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['proposal_id'], ['proposals.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_proposal_signatures_id', 'proposal_signatures', ['id'])
    op.create_index('ix_proposal_signatures_org_id', 'proposal_signatures', ['org_id'])
    op.create_index('ix_proposal_signatures_proposal_id', 'proposal_signatures', ['proposal_id'])

    op.create_table(
        'proposal_workflow_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('proposal_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('recipient_email', sa.String(length=255), nullable=True),
        sa.Column('payload', JSONB(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('dispatched_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['proposal_id'], ['proposals.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_proposal_workflow_events_id', 'proposal_workflow_events', ['id'])
    op.create_index('ix_proposal_workflow_events_org_id', 'proposal_workflow_events', ['org_id'])
    op.create_index('ix_proposal_workflow_events_proposal_id', 'proposal_workflow_events', ['proposal_id'])
    op.create_index('ix_proposal_workflow_events_pending', 'proposal_workflow_events', ['dispatched_at', 'attempts'])


def downgrade() -> None:
    """Drop proposal and workflow tables in reverse dependency order."""
    op.drop_table('proposal_workflow_events')
    op.drop_table('proposal_signatures')
    op.drop_table('proposal_approvals')
    op.drop_table('proposal_approval_chains')
    op.drop_table('proposal_versions')
    op.drop_table('proposal_items')
    op.drop_table('proposals')
    op.drop_table('proposal_templates')
