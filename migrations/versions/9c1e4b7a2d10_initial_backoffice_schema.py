"""initial backoffice schema

Revision ID: 9c1e4b7a2d10
Revises:
Create Date: 2026-10-19 09:12:44.118204

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '9c1e4b7a2d10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('users',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('password_hash', sa.String(length=255), nullable=False),
    sa.Column('full_name', sa.String(length=255), nullable=True),
    sa.Column('is_admin', sa.Boolean(), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email')
    )
    op.create_table('audit_events',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('actor_user_id', sa.String(length=36), nullable=True),
    sa.Column('action', sa.String(length=255), nullable=False),
    sa.Column('subject_id', sa.String(length=64), nullable=True),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_table('scheduler_requests',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('customer_name', sa.String(length=255), nullable=False),
    sa.Column('customer_email', sa.String(length=255), nullable=True),
    sa.Column('customer_phone', sa.String(length=50), nullable=False),
    sa.Column('address', sa.String(length=500), nullable=False),
    sa.Column('city', sa.String(length=100), nullable=True),
    sa.Column('state', sa.String(length=50), nullable=True),
    sa.Column('zip_code', sa.String(length=20), nullable=True),
    sa.Column('requested_service', sa.String(length=255), nullable=False),
    sa.Column('preferred_date', sa.Date(), nullable=True),
    sa.Column('preferred_time_slot', sa.String(length=50), nullable=True),
    sa.Column('special_instructions', sa.Text(), nullable=True),
    sa.Column('booking_source', sa.String(length=50), nullable=False),
    sa.Column('utm_source', sa.String(length=100), nullable=True),
    sa.Column('utm_medium', sa.String(length=100), nullable=True),
    sa.Column('utm_campaign', sa.String(length=255), nullable=True),
    sa.Column('referral_token', sa.String(length=255), nullable=True),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('service_titan_customer_id', sa.BigInteger(), nullable=True),
    sa.Column('service_titan_location_id', sa.BigInteger(), nullable=True),
    sa.Column('service_titan_job_id', sa.BigInteger(), nullable=True),
    sa.Column('service_titan_appointment_id', sa.BigInteger(), nullable=True),
    sa.Column('job_number', sa.String(length=50), nullable=True),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('booked_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_table('tracking_numbers',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('utm_source', sa.String(length=100), nullable=False),
    sa.Column('display_name', sa.String(length=255), nullable=True),
    sa.Column('phone_number', sa.String(length=50), nullable=True),
    sa.Column('service_titan_campaign_id', sa.BigInteger(), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('utm_source')
    )
    op.create_table('referral_codes',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('customer_id', sa.BigInteger(), nullable=False),
    sa.Column('customer_name', sa.String(length=255), nullable=True),
    sa.Column('customer_phone', sa.String(length=50), nullable=False),
    sa.Column('code', sa.String(length=100), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('code'),
    sa.UniqueConstraint('customer_id')
    )
    op.create_table('referrals',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('referrer_name', sa.String(length=255), nullable=True),
    sa.Column('referrer_phone', sa.String(length=50), nullable=False),
    sa.Column('referrer_customer_id', sa.BigInteger(), nullable=True),
    sa.Column('referee_name', sa.String(length=255), nullable=False),
    sa.Column('referee_phone', sa.String(length=50), nullable=False),
    sa.Column('referee_email', sa.String(length=255), nullable=True),
    sa.Column('referee_customer_id', sa.BigInteger(), nullable=True),
    sa.Column('tracking_token', sa.String(length=255), nullable=True),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('first_job_id', sa.String(length=50), nullable=True),
    sa.Column('first_job_date', sa.DateTime(timezone=True), nullable=True),
    sa.Column('job_amount', sa.Integer(), nullable=True),
    sa.Column('credit_status', sa.String(length=50), nullable=True),
    sa.Column('credit_amount', sa.Integer(), nullable=True),
    sa.Column('credit_issued_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('credit_notes', sa.Text(), nullable=True),
    sa.Column('credited_by', sa.String(length=255), nullable=True),
    sa.Column('submitted_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.Column('contacted_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('job_completed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('tracking_token')
    )
    op.create_table('pending_referrals',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('tracking_cookie', sa.String(length=255), nullable=False),
    sa.Column('referrer_customer_id', sa.BigInteger(), nullable=False),
    sa.Column('referrer_name', sa.String(length=255), nullable=True),
    sa.Column('referee_name', sa.String(length=255), nullable=True),
    sa.Column('referee_email', sa.String(length=255), nullable=True),
    sa.Column('referee_phone', sa.String(length=50), nullable=True),
    sa.Column('referral_id', sa.String(length=36), nullable=True),
    sa.Column('converted_to_referral', sa.Boolean(), nullable=False),
    sa.Column('converted_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.ForeignKeyConstraint(['referral_id'], ['referrals.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('tracking_cookie')
    )
    op.create_table('referral_nurture_campaigns',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('customer_id', sa.BigInteger(), nullable=False),
    sa.Column('customer_email', sa.String(length=255), nullable=False),
    sa.Column('original_review_id', sa.String(length=255), nullable=True),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('email1_sent_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('email2_sent_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('email3_sent_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('email4_sent_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('consecutive_unopened', sa.Integer(), nullable=False),
    sa.Column('total_opens', sa.Integer(), nullable=False),
    sa.Column('total_clicks', sa.Integer(), nullable=False),
    sa.Column('referrals_submitted', sa.Integer(), nullable=False),
    sa.Column('paused_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('pause_reason', sa.String(length=100), nullable=True),
    sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('customer_id')
    )
    op.create_table('review_email_templates',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('campaign_type', sa.String(length=50), nullable=False),
    sa.Column('email_number', sa.Integer(), nullable=False),
    sa.Column('subject', sa.String(length=255), nullable=False),
    sa.Column('preheader', sa.String(length=255), nullable=True),
    sa.Column('html_content', sa.Text(), nullable=False),
    sa.Column('plain_text_content', sa.Text(), nullable=False),
    sa.Column('strategy', sa.String(length=50), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('campaign_type', 'email_number', name='uq_review_email_templates_slot')
    )
    op.create_table('email_suppression_list',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('reason', sa.String(length=100), nullable=False),
    sa.Column('source', sa.String(length=100), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email')
    )
    op.create_table('email_preferences',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('customer_id', sa.BigInteger(), nullable=True),
    sa.Column('unsubscribe_token', sa.String(length=64), nullable=False),
    sa.Column('marketing_emails', sa.Boolean(), nullable=False),
    sa.Column('review_requests', sa.Boolean(), nullable=False),
    sa.Column('referral_emails', sa.Boolean(), nullable=False),
    sa.Column('service_reminders', sa.Boolean(), nullable=False),
    sa.Column('transactional_only', sa.Boolean(), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email'),
    sa.UniqueConstraint('unsubscribe_token')
    )
    op.create_table('email_send_log',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('campaign_type', sa.String(length=50), nullable=False),
    sa.Column('campaign_record_id', sa.String(length=36), nullable=True),
    sa.Column('email_number', sa.Integer(), nullable=True),
    sa.Column('recipient_email', sa.String(length=255), nullable=False),
    sa.Column('recipient_name', sa.String(length=255), nullable=True),
    sa.Column('customer_id', sa.BigInteger(), nullable=True),
    sa.Column('resend_email_id', sa.String(length=255), nullable=True),
    sa.Column('resend_status', sa.String(length=50), nullable=False),
    sa.Column('sent_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.Column('opened_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('clicked_at', sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('resend_email_id')
    )
    op.create_table('system_settings',
    sa.Column('key', sa.String(length=100), nullable=False),
    sa.Column('value', sa.Text(), nullable=True),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('key')
    )
    op.create_table('vouchers',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('code', sa.String(length=20), nullable=False),
    sa.Column('voucher_type', sa.String(length=50), nullable=False),
    sa.Column('customer_name', sa.String(length=255), nullable=True),
    sa.Column('customer_email', sa.String(length=255), nullable=True),
    sa.Column('customer_phone', sa.String(length=50), nullable=True),
    sa.Column('customer_id', sa.BigInteger(), nullable=True),
    sa.Column('referral_id', sa.String(length=36), nullable=True),
    sa.Column('referrer_customer_id', sa.BigInteger(), nullable=True),
    sa.Column('discount_amount', sa.Integer(), nullable=False),
    sa.Column('minimum_job_amount', sa.Integer(), nullable=False),
    sa.Column('status', sa.String(length=50), nullable=False),
    sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('redeemed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('redeemed_by', sa.String(length=255), nullable=True),
    sa.Column('redeemed_job_id', sa.String(length=50), nullable=True),
    sa.Column('redeemed_job_number', sa.String(length=50), nullable=True),
    sa.Column('redeemed_job_amount', sa.Integer(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.ForeignKeyConstraint(['referral_id'], ['referrals.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('code')
    )
    op.create_table('customers_xlsx',
    sa.Column('id', sa.BigInteger(), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('type', sa.String(length=50), nullable=True),
    sa.Column('phone', sa.String(length=50), nullable=True),
    sa.Column('email', sa.String(length=255), nullable=True),
    sa.Column('street', sa.String(length=255), nullable=True),
    sa.Column('city', sa.String(length=100), nullable=True),
    sa.Column('state', sa.String(length=50), nullable=True),
    sa.Column('zip', sa.String(length=20), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('lifetime_revenue', sa.Integer(), nullable=True),
    sa.Column('imported_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_table('contacts_xlsx',
    sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('customer_id', sa.BigInteger(), nullable=False),
    sa.Column('contact_type', sa.String(length=50), nullable=False),
    sa.Column('value', sa.String(length=255), nullable=False),
    sa.Column('normalized_value', sa.String(length=255), nullable=False),
    sa.ForeignKeyConstraint(['customer_id'], ['customers_xlsx.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('contacts_xlsx', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_contacts_xlsx_normalized_value'), ['normalized_value'], unique=False)


def downgrade():
    with op.batch_alter_table('contacts_xlsx', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_contacts_xlsx_normalized_value'))

    op.drop_table('contacts_xlsx')
    op.drop_table('customers_xlsx')
    op.drop_table('vouchers')
    op.drop_table('system_settings')
    op.drop_table('email_send_log')
    op.drop_table('email_preferences')
    op.drop_table('email_suppression_list')
    op.drop_table('review_email_templates')
    op.drop_table('referral_nurture_campaigns')
    op.drop_table('pending_referrals')
    op.drop_table('referrals')
    op.drop_table('referral_codes')
    op.drop_table('tracking_numbers')
    op.drop_table('scheduler_requests')
    op.drop_table('audit_events')
    op.drop_table('users')
