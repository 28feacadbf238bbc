"""create reservation core tables

Revision ID: 0001_create_reservation_core
Revises:
Create Date: 2026-01-01 09:00:00

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_create_reservation_core'
down_revision = None
branch_labels = None
depends_on = None


reservation_status = sa.Enum(
    'PENDING_PAYMENT', 'AWAITING_TRANSFER', 'PAYMENT_FAILED',
    'CONFIRMED', 'COMPLETED', 'CANCELLED',
    name='reservationstatus',
)
participant_category = sa.Enum('ADULT', 'CHILD', 'INFANT', name='participantcategory')
payment_channel = sa.Enum('CARD', 'MOBILE_WALLET', 'BANK_TRANSFER', name='paymentchannel')
payment_status = sa.Enum(
    'PENDING', 'COMPLETED', 'FAILED', 'REFUNDED', 'PARTIALLY_REFUNDED', 'CANCELLED',
    name='paymentstatus',
)
voucher_status = sa.Enum(
    'PENDING', 'ACTIVE', 'REDEEMED', 'USED', 'EXPIRED', 'CANCELLED',
    name='voucherstatus',
)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    op.create_table(
        'experience_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('remaining_capacity', sa.Integer(), nullable=False),
        sa.Column('starts_at', sa.DateTime(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('child_price', sa.Numeric(10, 2), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            'remaining_capacity >= 0 AND remaining_capacity <= capacity',
            name='ck_event_remaining_capacity',
        ),
    )
    op.create_index('ix_experience_events_provider_id', 'experience_events', ['provider_id'])
    op.create_index('ix_experience_events_starts_at', 'experience_events', ['starts_at'])
    op.create_index('idx_event_provider_start', 'experience_events', ['provider_id', 'starts_at'])

    op.create_table(
        'gift_vouchers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(32), nullable=True),
        sa.Column('face_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('balance', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', voucher_status, nullable=False),
        sa.Column('purchaser_id', sa.Integer(), nullable=True),
        sa.Column('owner_id', sa.Integer(), nullable=True),
        sa.Column('recipient_name', sa.String(100), nullable=True),
        sa.Column('recipient_email', sa.String(255), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.Column('redeemed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('balance >= 0 AND balance <= face_amount', name='ck_voucher_balance'),
    )
    op.create_index('ix_gift_vouchers_code', 'gift_vouchers', ['code'], unique=True)
    op.create_index('ix_gift_vouchers_status', 'gift_vouchers', ['status'])
    op.create_index('idx_voucher_owner_status', 'gift_vouchers', ['owner_id', 'status'])

    op.create_table(
        'reservations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.Integer(), sa.ForeignKey('experience_events.id'), nullable=False),
        sa.Column('adults', sa.Integer(), nullable=False),
        sa.Column('children', sa.Integer(), nullable=False),
        sa.Column('infants', sa.Integer(), nullable=False),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', reservation_status, nullable=False),
        sa.Column('invite_code', sa.String(32), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_reservations_event_id', 'reservations', ['event_id'])
    op.create_index('ix_reservations_invite_code', 'reservations', ['invite_code'], unique=True)
    op.create_index('idx_reservation_status_created', 'reservations', ['status', 'created_at'])
    op.create_index('idx_reservation_user_status', 'reservations', ['user_id', 'status'])

    op.create_table(
        'reservation_participants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('reservation_id', sa.Integer(), sa.ForeignKey('reservations.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('category', participant_category, nullable=False),
        sa.Column('joined_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('reservation_id', 'user_id', name='uq_participant_reservation_user'),
    )
    op.create_index(
        'ix_reservation_participants_reservation_id', 'reservation_participants', ['reservation_id']
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('payment_id', sa.String(100), nullable=False),
        sa.Column('reservation_id', sa.Integer(), sa.ForeignKey('reservations.id'), nullable=False),
        sa.Column('channel', payment_channel, nullable=False),
        sa.Column('status', payment_status, nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('charge_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('voucher_id', sa.Integer(), sa.ForeignKey('gift_vouchers.id'), nullable=True),
        sa.Column('voucher_applied_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('refunded_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('transfer_deadline', sa.DateTime(), nullable=True),
        sa.Column('checkout_session_id', sa.String(255), nullable=True),
        sa.Column('checkout_url', sa.Text(), nullable=True),
        sa.Column('external_charge_id', sa.String(255), nullable=True),
        sa.Column('gateway_refund_id', sa.String(255), nullable=True),
        sa.Column('failure_code', sa.String(100), nullable=True),
        sa.Column('failure_message', sa.Text(), nullable=True),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('refunded_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_payments_payment_id', 'payments', ['payment_id'], unique=True)
    op.create_index('ix_payments_reservation_id', 'payments', ['reservation_id'], unique=True)
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('idx_payment_channel_session', 'payments', ['channel', 'checkout_session_id'])
    op.create_index('idx_payment_status_deadline', 'payments', ['status', 'transfer_deadline'])

    op.create_table(
        'payment_webhooks',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('webhook_id', sa.String(100), nullable=False),
        sa.Column('channel', payment_channel, nullable=False),
        sa.Column('gateway_event_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('payment_id', sa.Integer(), sa.ForeignKey('payments.id'), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
    )
    op.create_index('ix_payment_webhooks_webhook_id', 'payment_webhooks', ['webhook_id'], unique=True)
    op.create_index(
        'ix_payment_webhooks_gateway_event_id', 'payment_webhooks', ['gateway_event_id'], unique=True
    )
    op.create_index(
        'idx_webhook_channel_event', 'payment_webhooks', ['channel', 'event_type', 'processed']
    )

    op.create_table(
        'gift_voucher_consumptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('voucher_id', sa.Integer(), sa.ForeignKey('gift_vouchers.id'), nullable=False),
        sa.Column('payment_id', sa.String(100), nullable=False, unique=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('consumed_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        'ix_gift_voucher_consumptions_voucher_id', 'gift_voucher_consumptions', ['voucher_id']
    )


def downgrade():
    op.drop_table('gift_voucher_consumptions')
    op.drop_table('payment_webhooks')
    op.drop_table('payments')
    op.drop_table('reservation_participants')
    op.drop_table('reservations')
    op.drop_table('gift_vouchers')
    op.drop_table('experience_events')

    bind = op.get_bind()
    for enum in (voucher_status, payment_status, payment_channel,
                 participant_category, reservation_status):
        enum.drop(bind, checkfirst=True)
