"""Shared fixtures: a throwaway SQLite database and an in-memory queue."""

from datetime import datetime
from decimal import Decimal

import pytest

from gpuwatch.db.models import GPU, PriceHistoryPoint
from gpuwatch.db.session import Database
from gpuwatch.queue.backend import InMemoryJobQueue


class FakeClock:
    """Manually advanced clock for queue timing."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
async def db(tmp_path):
    """File-backed SQLite so every session sees the same data."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    await database.create_all()
    try:
        yield database
    finally:
        await database.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    return InMemoryJobQueue(lease_seconds=60, clock=clock)


async def create_gpu(db: Database, slug: str = "rtx-5080", msrp: str = "999.00", **fields) -> GPU:
    async with db.session() as session:
        gpu = GPU(
            slug=slug,
            model=fields.pop("model", f"GeForce {slug.upper()}"),
            brand=fields.pop("brand", "nvidia"),
            vram_gb=fields.pop("vram_gb", 16),
            msrp_usd=Decimal(msrp),
            **fields,
        )
        session.add(gpu)
        await session.commit()
        return gpu


async def add_history(db: Database, gpu_id: int, retailer: str, points) -> None:
    """Insert (recorded_at, price) pairs as raw history."""
    async with db.session() as session:
        for recorded_at, price in points:
            session.add(
                PriceHistoryPoint(
                    gpu_id=gpu_id,
                    retailer=retailer,
                    price_usd=Decimal(str(price)),
                    stock_status="in_stock",
                    recorded_at=recorded_at,
                )
            )
        await session.commit()


@pytest.fixture
async def gpu(db):
    return await create_gpu(db)


@pytest.fixture
def now():
    return datetime(2026, 10, 19, 12, 0, 0)
