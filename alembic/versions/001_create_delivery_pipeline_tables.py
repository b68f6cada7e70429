"""Create delivery pipeline tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSON


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create content, subscribers and deliveries tables."""

    # 1. Create content table
    op.create_table(
        'content',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('html_content', sa.Text(), nullable=False),
        sa.Column('plain_text_content', sa.Text(), nullable=False, server_default=''),
        sa.Column('sms_content', sa.String(length=160), nullable=False, server_default=''),
        sa.Column('content_date', sa.DateTime(), nullable=False),
        sa.Column('sports', JSON(), nullable=True),
        sa.Column('tier_availability', JSON(), nullable=True),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default='false'),
        # Analytics aggregate
        sa.Column('emails_sent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('emails_opened', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('email_clicks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sms_sent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivery_success_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivery_failure_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivery_pending_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conversion_rate', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_content_title', 'content', ['title'])
    op.create_index('ix_content_content_date', 'content', ['content_date'])
    op.create_index('ix_content_is_published', 'content', ['is_published'])
    op.create_index('ix_content_created_at', 'content', ['created_at'])

    # 2. Create subscribers table
    op.create_table(
        'subscribers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('subscription_tier', sa.String(length=20), nullable=False, server_default='FREE'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('receive_email', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('receive_sms', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(length=255), nullable=True),
        sa.Column('last_payment_date', sa.DateTime(), nullable=True),
        sa.Column('next_billing_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.CheckConstraint(
            'receive_sms = false OR phone IS NOT NULL',
            name='ck_subscribers_sms_requires_phone'
        ),
    )
    op.create_index('ix_subscribers_email', 'subscribers', ['email'])
    op.create_index('ix_subscribers_subscription_tier', 'subscribers', ['subscription_tier'])
    op.create_index('ix_subscribers_is_active', 'subscribers', ['is_active'])
    op.create_index('ix_subscribers_stripe_customer_id', 'subscribers', ['stripe_customer_id'])
    op.create_index('ix_subscribers_created_at', 'subscribers', ['created_at'])

    # 3. Create deliveries table
    op.create_table(
        'deliveries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('subscriber_id', sa.Integer(), nullable=False),
        sa.Column('content_id', sa.Integer(), nullable=False),
        sa.Column('channel', sa.String(length=10), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('opened_at', sa.DateTime(), nullable=True),
        sa.Column('clicked_at', sa.DateTime(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tracking_id', sa.String(length=64), nullable=False),
        sa.Column('metadata', JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['subscriber_id'], ['subscribers.id']),
        sa.ForeignKeyConstraint(['content_id'], ['content.id']),
        sa.UniqueConstraint(
            'subscriber_id', 'content_id', 'channel',
            name='uq_deliveries_subscriber_content_channel'
        ),
        sa.CheckConstraint('retry_count >= 0', name='ck_deliveries_retry_count_non_negative'),
    )
    op.create_index('ix_deliveries_subscriber_id', 'deliveries', ['subscriber_id'])
    op.create_index('ix_deliveries_content_id', 'deliveries', ['content_id'])
    op.create_index('ix_deliveries_status', 'deliveries', ['status'])
    op.create_index('ix_deliveries_sent_at', 'deliveries', ['sent_at'])
    op.create_index('ix_deliveries_tracking_id', 'deliveries', ['tracking_id'], unique=True)


def downgrade():
    """Drop delivery pipeline tables."""
    # Drop in reverse order of creation
    op.drop_index('ix_deliveries_tracking_id', table_name='deliveries')
    op.drop_index('ix_deliveries_sent_at', table_name='deliveries')
    op.drop_index('ix_deliveries_status', table_name='deliveries')
    op.drop_index('ix_deliveries_content_id', table_name='deliveries')
    op.drop_index('ix_deliveries_subscriber_id', table_name='deliveries')
    op.drop_table('deliveries')

    op.drop_index('ix_subscribers_created_at', table_name='subscribers')
    op.drop_index('ix_subscribers_stripe_customer_id', table_name='subscribers')
    op.drop_index('ix_subscribers_is_active', table_name='subscribers')
    op.drop_index('ix_subscribers_subscription_tier', table_name='subscribers')
    op.drop_index('ix_subscribers_email', table_name='subscribers')
    op.drop_table('subscribers')

    op.drop_index('ix_content_created_at', table_name='content')
    op.drop_index('ix_content_is_published', table_name='content')
    op.drop_index('ix_content_content_date', table_name='content')
    op.drop_index('ix_content_title', table_name='content')
    op.drop_table('content')
