"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # GPU catalog
    op.create_table(
        'gpus',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('slug', sa.String(length=64), nullable=False),
        sa.Column('model', sa.String(length=128), nullable=False),
        sa.Column('brand', sa.String(length=16), nullable=False),
        sa.Column('architecture', sa.String(length=64), nullable=True),
        sa.Column('generation', sa.String(length=64), nullable=True),
        sa.Column('vram_gb', sa.Integer(), nullable=False),
        sa.Column('tdp_watts', sa.Integer(), nullable=True),
        sa.Column('msrp_usd', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('release_date', sa.Date(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug'),
        sa.CheckConstraint('msrp_usd > 0', name='ck_gpus_msrp_positive'),
    )

    op.create_table(
        'sku_mappings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('gpu_id', sa.Integer(), nullable=False),
        sa.Column('retailer', sa.String(length=32), nullable=False),
        sa.Column('retailer_sku', sa.String(length=128), nullable=False),
        sa.Column('retailer_model_name', sa.Text(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['gpu_id'], ['gpus.id']),
        sa.UniqueConstraint('gpu_id', 'retailer', name='uq_sku_mapping_gpu_retailer'),
    )

    # Live offer snapshot, one per (gpu, retailer)
    op.create_table(
        'retailer_offers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('gpu_id', sa.Integer(), nullable=False),
        sa.Column('retailer', sa.String(length=32), nullable=False),
        sa.Column('sku', sa.String(length=128), nullable=False),
        sa.Column('price_usd', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('regular_price_usd', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('sale_price_usd', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('stock_status', sa.String(length=16), nullable=False),
        sa.Column('stock_quantity', sa.Integer(), nullable=True),
        sa.Column('affiliate_url', sa.Text(), nullable=False),
        sa.Column('direct_url', sa.Text(), nullable=False),
        sa.Column('last_checked_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['gpu_id'], ['gpus.id']),
        sa.UniqueConstraint('gpu_id', 'retailer', name='uq_retailer_offer_gpu_retailer'),
    )
    op.create_index(
        'ix_retailer_offers_last_checked_at', 'retailer_offers', ['last_checked_at']
    )

    # Raw price history (append-only)
    op.create_table(
        'price_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('gpu_id', sa.Integer(), nullable=False),
        sa.Column('retailer', sa.String(length=32), nullable=False),
        sa.Column('price_usd', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('stock_status', sa.String(length=16), nullable=False),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['gpu_id'], ['gpus.id']),
    )
    op.create_index(
        'ix_price_history_gpu_retailer_recorded',
        'price_history',
        ['gpu_id', 'retailer', 'recorded_at'],
    )
    op.create_index('ix_price_history_recorded_at', 'price_history', ['recorded_at'])

    # Weekly rollups of compacted history
    op.create_table(
        'price_history_weekly',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('gpu_id', sa.Integer(), nullable=False),
        sa.Column('retailer', sa.String(length=32), nullable=False),
        sa.Column('week_start', sa.Date(), nullable=False),
        sa.Column('avg_price_usd', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('min_price_usd', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('max_price_usd', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('sample_count', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['gpu_id'], ['gpus.id']),
        sa.UniqueConstraint(
            'gpu_id', 'retailer', 'week_start', name='uq_price_history_weekly_bucket'
        ),
    )

    op.create_table(
        'deal_scores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('gpu_id', sa.Integer(), nullable=False),
        sa.Column('retailer', sa.String(length=32), nullable=False),
        sa.Column('current_price_usd', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('rolling_30d_avg', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('rolling_30d_min', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('rolling_30d_max', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('msrp_usd', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('pct_below_avg', sa.Float(), nullable=True),
        sa.Column('msrp_delta_pct', sa.Float(), nullable=True),
        sa.Column('volatility_score', sa.Float(), nullable=False),
        sa.Column('is_deal', sa.Boolean(), nullable=False),
        sa.Column('deal_reason', sa.Text(), nullable=True),
        sa.Column('computed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['gpu_id'], ['gpus.id']),
        sa.UniqueConstraint('gpu_id', 'retailer', name='uq_deal_score_gpu_retailer'),
    )

    op.create_table(
        'gpu_watches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('gpu_id', sa.Integer(), nullable=False),
        sa.Column('target_price_usd', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('notify_in_stock', sa.Boolean(), nullable=False),
        sa.Column('last_notified_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['gpu_id'], ['gpus.id']),
        sa.UniqueConstraint('email', 'gpu_id', name='uq_gpu_watch_email_gpu'),
    )

    op.create_table(
        'ingestion_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('gpus_updated', sa.Integer(), nullable=False),
        sa.Column('errors', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('duration_ms', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'outbound_clicks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('gpu_id', sa.Integer(), nullable=False),
        sa.Column('retailer', sa.String(length=32), nullable=False),
        sa.Column('ref_url', sa.Text(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('clicked_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['gpu_id'], ['gpus.id']),
    )


def downgrade() -> None:
    op.drop_table('outbound_clicks')
    op.drop_table('ingestion_runs')
    op.drop_table('gpu_watches')
    op.drop_table('deal_scores')
    op.drop_table('price_history_weekly')
    op.drop_index('ix_price_history_recorded_at', table_name='price_history')
    op.drop_index('ix_price_history_gpu_retailer_recorded', table_name='price_history')
    op.drop_table('price_history')
    op.drop_index('ix_retailer_offers_last_checked_at', table_name='retailer_offers')
    op.drop_table('retailer_offers')
    op.drop_table('sku_mappings')
    op.drop_table('gpus')
