"""SQLAlchemy database models."""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class StockStatus(str, enum.Enum):
    """Normalized stock vocabulary shared by every retailer."""

    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    LIMITED = "limited"
    PREORDER = "preorder"
    UNKNOWN = "unknown"


class RetailerSource(str, enum.Enum):
    """Retailers with an ingestion adapter."""

    BESTBUY = "bestbuy"
    AMAZON = "amazon"
    NEWEGG = "newegg"
    BH_PHOTO = "bh_photo"


class IngestionStatus(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class GPU(Base):
    """Catalog entry. Never hard-deleted; `active=False` stops ingestion."""

    __tablename__ = "gpus"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    model: Mapped[str] = mapped_column(String(128), nullable=False)
    brand: Mapped[str] = mapped_column(String(16), nullable=False)  # nvidia, amd
    architecture: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    generation: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    vram_gb: Mapped[int] = mapped_column(Integer, nullable=False)
    tdp_watts: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    msrp_usd: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    release_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    offers: Mapped[list["RetailerOffer"]] = relationship(
        "RetailerOffer", back_populates="gpu"
    )
    watches: Mapped[list["GPUWatch"]] = relationship("GPUWatch", back_populates="gpu")

    __table_args__ = (
        CheckConstraint("msrp_usd > 0", name="ck_gpus_msrp_positive"),
    )


class SKUMapping(Base):
    """Retailer-specific lookup key for a GPU (search term, ASIN, SKU)."""

    __tablename__ = "sku_mappings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    gpu_id: Mapped[int] = mapped_column(Integer, ForeignKey("gpus.id"), nullable=False)
    retailer: Mapped[str] = mapped_column(String(32), nullable=False)
    retailer_sku: Mapped[str] = mapped_column(String(128), nullable=False)
    retailer_model_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("gpu_id", "retailer", name="uq_sku_mapping_gpu_retailer"),
    )


class RetailerOffer(Base):
    """Current snapshot of one retailer's offer for one GPU. Upserted, never historical."""

    __tablename__ = "retailer_offers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    gpu_id: Mapped[int] = mapped_column(Integer, ForeignKey("gpus.id"), nullable=False)
    retailer: Mapped[str] = mapped_column(String(32), nullable=False)
    sku: Mapped[str] = mapped_column(String(128), nullable=False)
    price_usd: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    regular_price_usd: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    sale_price_usd: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    stock_status: Mapped[str] = mapped_column(
        String(16), default=StockStatus.UNKNOWN.value, nullable=False
    )
    stock_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    affiliate_url: Mapped[str] = mapped_column(Text, nullable=False)
    direct_url: Mapped[str] = mapped_column(Text, nullable=False)
    last_checked_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    gpu: Mapped["GPU"] = relationship("GPU", back_populates="offers")

    __table_args__ = (
        UniqueConstraint("gpu_id", "retailer", name="uq_retailer_offer_gpu_retailer"),
        Index("ix_retailer_offers_last_checked_at", "last_checked_at"),
    )


class PriceHistoryPoint(Base):
    """Append-only price observation."""

    __tablename__ = "price_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    gpu_id: Mapped[int] = mapped_column(Integer, ForeignKey("gpus.id"), nullable=False)
    retailer: Mapped[str] = mapped_column(String(32), nullable=False)
    price_usd: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    stock_status: Mapped[str] = mapped_column(
        String(16), default=StockStatus.UNKNOWN.value, nullable=False
    )
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_price_history_gpu_retailer_recorded", "gpu_id", "retailer", "recorded_at"),
        Index("ix_price_history_recorded_at", "recorded_at"),
    )


class PriceHistoryWeekly(Base):
    """Weekly rollup of raw history older than the retention window."""

    __tablename__ = "price_history_weekly"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    gpu_id: Mapped[int] = mapped_column(Integer, ForeignKey("gpus.id"), nullable=False)
    retailer: Mapped[str] = mapped_column(String(32), nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)  # Monday
    avg_price_usd: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    min_price_usd: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    max_price_usd: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    sample_count: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "gpu_id", "retailer", "week_start", name="uq_price_history_weekly_bucket"
        ),
    )


class DealScore(Base):
    """Latest deal classification per (gpu, retailer). Replaced on every scoring run."""

    __tablename__ = "deal_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    gpu_id: Mapped[int] = mapped_column(Integer, ForeignKey("gpus.id"), nullable=False)
    retailer: Mapped[str] = mapped_column(String(32), nullable=False)
    current_price_usd: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    rolling_30d_avg: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    rolling_30d_min: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    rolling_30d_max: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    msrp_usd: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    pct_below_avg: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    msrp_delta_pct: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    volatility_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    is_deal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deal_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("gpu_id", "retailer", name="uq_deal_score_gpu_retailer"),
    )


class GPUWatch(Base):
    """A user's alert subscription for one GPU."""

    __tablename__ = "gpu_watches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    gpu_id: Mapped[int] = mapped_column(Integer, ForeignKey("gpus.id"), nullable=False)
    target_price_usd: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )  # None = any drop
    notify_in_stock: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    gpu: Mapped["GPU"] = relationship("GPU", back_populates="watches")

    __table_args__ = (
        UniqueConstraint("email", "gpu_id", name="uq_gpu_watch_email_gpu"),
    )


class IngestionRun(Base):
    """Write-once audit record for one ingestion attempt."""

    __tablename__ = "ingestion_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # success, partial, error
    gpus_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errors: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class OutboundClick(Base):
    """Append-only click tracking for affiliate redirects."""

    __tablename__ = "outbound_clicks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    gpu_id: Mapped[int] = mapped_column(Integer, ForeignKey("gpus.id"), nullable=False)
    retailer: Mapped[str] = mapped_column(String(32), nullable=False)
    ref_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    clicked_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
