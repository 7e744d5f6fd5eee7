"""Initial schema: ledger, attestations, public keys, indexed records.

Revision ID: 001
Revises:
Create Date: 2025-10-30
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'ledger_events',
        sa.Column('block_number', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_hash', sa.String(length=66), nullable=False),
        sa.Column('previous_event_hash', sa.String(length=66), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('submitter', sa.String(length=255), nullable=False),
        sa.Column('payload_json', sa.JSON(), nullable=False),
        sa.Column('timestamp', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('block_number'),
    )
    op.create_index('ix_ledger_events_event_hash', 'ledger_events', ['event_hash'], unique=True)
    op.create_index('ix_ledger_events_event_type', 'ledger_events', ['event_type'])
    op.create_index('ix_ledger_events_submitter', 'ledger_events', ['submitter'])

    op.create_table(
        'attestations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('fingerprint', sa.String(length=66), nullable=False),
        sa.Column('content_address', sa.Text(), nullable=False),
        sa.Column('submitter', sa.String(length=255), nullable=False),
        sa.Column('auxiliary', sa.LargeBinary(), nullable=False),
        sa.Column('block_number', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_attestations_id', 'attestations', ['id'])
    op.create_index('ix_attestations_fingerprint', 'attestations', ['fingerprint'], unique=True)
    op.create_index('ix_attestations_submitter', 'attestations', ['submitter'])

    op.create_table(
        'public_keys',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('submitter', sa.String(length=255), nullable=False),
        sa.Column('public_key', sa.LargeBinary(), nullable=False),
        sa.Column('block_number', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_public_keys_id', 'public_keys', ['id'])
    op.create_index('ix_public_keys_submitter', 'public_keys', ['submitter'])

    op.create_table(
        'indexed_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('content_address', sa.Text(), nullable=False),
        sa.Column('fingerprint', sa.String(length=66), nullable=False),
        sa.Column('submitter_address', sa.String(length=255), nullable=False),
        sa.Column('observed_at_block', sa.BigInteger(), nullable=True),
        sa.Column('tx_hash', sa.String(length=66), nullable=True),
        sa.Column('attested_at', sa.DateTime(), nullable=True),
        sa.Column('category', sa.String(length=100), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_indexed_records_id', 'indexed_records', ['id'])
    op.create_index('ix_indexed_records_content_address', 'indexed_records', ['content_address'], unique=True)
    op.create_index('ix_indexed_records_fingerprint', 'indexed_records', ['fingerprint'], unique=True)
    op.create_index('ix_indexed_records_submitter_address', 'indexed_records', ['submitter_address'])
    op.create_index('ix_indexed_records_category', 'indexed_records', ['category'])
    op.create_index('ix_indexed_records_status', 'indexed_records', ['status'])
    op.create_index('ix_indexed_records_created_at', 'indexed_records', ['created_at'])

    op.create_table(
        'dead_letter_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('content_address', sa.Text(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=True),
        sa.Column('event_json', sa.JSON(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('last_attempt_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_dead_letter_events_id', 'dead_letter_events', ['id'])
    op.create_index('ix_dead_letter_events_content_address', 'dead_letter_events', ['content_address'])
    op.create_index('ix_dead_letter_events_status', 'dead_letter_events', ['status'])


def downgrade() -> None:
    op.drop_index('ix_dead_letter_events_status', table_name='dead_letter_events')
    op.drop_index('ix_dead_letter_events_content_address', table_name='dead_letter_events')
    op.drop_index('ix_dead_letter_events_id', table_name='dead_letter_events')
    op.drop_table('dead_letter_events')
    for index in (
        'created_at', 'status', 'category', 'submitter_address', 'fingerprint', 'content_address', 'id',
    ):
        op.drop_index(f'ix_indexed_records_{index}', table_name='indexed_records')
    op.drop_table('indexed_records')
    op.drop_index('ix_public_keys_submitter', table_name='public_keys')
    op.drop_index('ix_public_keys_id', table_name='public_keys')
    op.drop_table('public_keys')
    op.drop_index('ix_attestations_submitter', table_name='attestations')
    op.drop_index('ix_attestations_fingerprint', table_name='attestations')
    op.drop_index('ix_attestations_id', table_name='attestations')
    op.drop_table('attestations')
    op.drop_index('ix_ledger_events_submitter', table_name='ledger_events')
    op.drop_index('ix_ledger_events_event_type', table_name='ledger_events')
    op.drop_index('ix_ledger_events_event_hash', table_name='ledger_events')
    op.drop_table('ledger_events')
