"""Create scraping session and result tables

Revision ID: 3f9a1c7d2e40
Revises:
Create Date: 2026-10-19

This migration adds:
- scraping_sessions: one Google Maps search and its lifecycle
- scraping_results: leads, unique per (owner_id, natural_key)
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '3f9a1c7d2e40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'scraping_sessions',
        sa.Column('id', sa.Text(), primary_key=True),
        sa.Column('user_id', sa.Text(), nullable=False),

        # Search parameters
        sa.Column('google_maps_url', sa.Text(), nullable=True),
        sa.Column('sector', sa.Text(), nullable=False),
        sa.Column('location', sa.Text(), nullable=True),
        sa.Column('limit_results', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('email_notification', sa.Text(), nullable=True),

        # Spreadsheet destination
        sa.Column('new_file', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('file_name', sa.Text(), nullable=True),
        sa.Column('sheet_name', sa.Text(), nullable=True),
        sa.Column('sheet_url', sa.Text(), nullable=True),

        # Lifecycle
        sa.Column('status', sa.Text(), nullable=False, server_default='pending'),
        sa.Column('progress_percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_step', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),

        # Result counters
        sa.Column('actual_results', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('emails_found', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('scraped_data', postgresql.JSONB(), nullable=True),

        # Timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),

        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'failed')",
            name='ck_scraping_sessions_status'
        ),
        sa.CheckConstraint(
            'progress_percentage BETWEEN 0 AND 100',
            name='ck_scraping_sessions_progress'
        ),
    )

    op.create_index('idx_scraping_sessions_user', 'scraping_sessions', ['user_id'])
    op.create_index('idx_scraping_sessions_user_status', 'scraping_sessions', ['user_id', 'status'])
    op.create_index('idx_scraping_sessions_created', 'scraping_sessions', ['created_at'])

    op.create_table(
        'scraping_results',
        sa.Column('id', sa.Text(), primary_key=True),

        # Foreign key; deleting a session deletes its leads
        sa.Column(
            'session_id',
            sa.Text(),
            sa.ForeignKey('scraping_sessions.id', ondelete='CASCADE'),
            nullable=False
        ),
        sa.Column('owner_id', sa.Text(), nullable=False),
        sa.Column('natural_key', sa.Text(), nullable=False),

        # Business data
        sa.Column('business_name', sa.Text(), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('phone', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('website', sa.Text(), nullable=True),
        sa.Column('rating', sa.Float(), nullable=True),
        sa.Column('reviews_count', sa.Integer(), nullable=True),
        sa.Column('category', sa.Text(), nullable=True),
        sa.Column('maps_url', sa.Text(), nullable=True),
        sa.Column('opening_hours', postgresql.JSONB(), nullable=True),
        sa.Column('info', postgresql.JSONB(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('raw_data', postgresql.JSONB(), nullable=True),

        # Prospecting workflow
        sa.Column('status', sa.Text(), nullable=False, server_default='to_contact'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('last_action_at', sa.DateTime(timezone=True), nullable=True),

        # Email verification
        sa.Column('email_status', sa.Text(), nullable=False, server_default='unverified'),
        sa.Column('email_last_verified_at', sa.DateTime(timezone=True), nullable=True),

        # Timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_index(
        'uq_scraping_results_owner_key', 'scraping_results',
        ['owner_id', 'natural_key'], unique=True
    )
    op.create_index('idx_scraping_results_session', 'scraping_results', ['session_id'])
    op.create_index('idx_scraping_results_status', 'scraping_results', ['status'])


def downgrade() -> None:
    op.drop_index('idx_scraping_results_status', table_name='scraping_results')
    op.drop_index('idx_scraping_results_session', table_name='scraping_results')
    op.drop_index('uq_scraping_results_owner_key', table_name='scraping_results')
    op.drop_table('scraping_results')

    op.drop_index('idx_scraping_sessions_created', table_name='scraping_sessions')
    op.drop_index('idx_scraping_sessions_user_status', table_name='scraping_sessions')
    op.drop_index('idx_scraping_sessions_user', table_name='scraping_sessions')
    op.drop_table('scraping_sessions')
