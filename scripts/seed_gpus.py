#!/usr/bin/env python3
"""
Seed the GPU catalog.

Idempotent: rows are upserted by slug, so re-running updates specs and MSRPs
in place without touching history.
"""

import asyncio
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gpuwatch.catalog.validation import validate_gpu_input
from gpuwatch.db.repository import Repository
from gpuwatch.db.session import Database

GPU_SEED = [
    {"slug": "rtx-5090", "model": "GeForce RTX 5090", "brand": "nvidia", "architecture": "Blackwell",
     "generation": "RTX 50", "vram_gb": 32, "tdp_watts": 575, "msrp_usd": Decimal("1999.00"),
     "release_date": date(2025, 1, 30)},
    {"slug": "rtx-5080", "model": "GeForce RTX 5080", "brand": "nvidia", "architecture": "Blackwell",
     "generation": "RTX 50", "vram_gb": 16, "tdp_watts": 360, "msrp_usd": Decimal("999.00"),
     "release_date": date(2025, 1, 30)},
    {"slug": "rtx-5070-ti", "model": "GeForce RTX 5070 Ti", "brand": "nvidia", "architecture": "Blackwell",
     "generation": "RTX 50", "vram_gb": 16, "tdp_watts": 300, "msrp_usd": Decimal("749.00"),
     "release_date": date(2025, 2, 20)},
    {"slug": "rtx-5070", "model": "GeForce RTX 5070", "brand": "nvidia", "architecture": "Blackwell",
     "generation": "RTX 50", "vram_gb": 12, "tdp_watts": 250, "msrp_usd": Decimal("549.00"),
     "release_date": date(2025, 3, 5)},
    {"slug": "rtx-5060-ti", "model": "GeForce RTX 5060 Ti", "brand": "nvidia", "architecture": "Blackwell",
     "generation": "RTX 50", "vram_gb": 16, "tdp_watts": 180, "msrp_usd": Decimal("429.00"),
     "release_date": date(2025, 4, 16)},
    {"slug": "rtx-4090", "model": "GeForce RTX 4090", "brand": "nvidia", "architecture": "Ada Lovelace",
     "generation": "RTX 40", "vram_gb": 24, "tdp_watts": 450, "msrp_usd": Decimal("1599.00"),
     "release_date": date(2022, 10, 12)},
    {"slug": "rtx-4080-super", "model": "GeForce RTX 4080 SUPER", "brand": "nvidia",
     "architecture": "Ada Lovelace", "generation": "RTX 40", "vram_gb": 16, "tdp_watts": 320,
     "msrp_usd": Decimal("999.00"), "release_date": date(2024, 1, 31)},
    {"slug": "rtx-4070-super", "model": "GeForce RTX 4070 SUPER", "brand": "nvidia",
     "architecture": "Ada Lovelace", "generation": "RTX 40", "vram_gb": 12, "tdp_watts": 220,
     "msrp_usd": Decimal("599.00"), "release_date": date(2024, 1, 17)},
    {"slug": "rx-9070-xt", "model": "Radeon RX 9070 XT", "brand": "amd", "architecture": "RDNA 4",
     "generation": "RX 9000", "vram_gb": 16, "tdp_watts": 304, "msrp_usd": Decimal("599.00"),
     "release_date": date(2025, 3, 6)},
    {"slug": "rx-9060-xt", "model": "Radeon RX 9060 XT", "brand": "amd", "architecture": "RDNA 4",
     "generation": "RX 9000", "vram_gb": 16, "tdp_watts": 160, "msrp_usd": Decimal("349.00"),
     "release_date": date(2025, 6, 5)},
    {"slug": "rx-7900-xtx", "model": "Radeon RX 7900 XTX", "brand": "amd", "architecture": "RDNA 3",
     "generation": "RX 7000", "vram_gb": 24, "tdp_watts": 355, "msrp_usd": Decimal("999.00"),
     "release_date": date(2022, 12, 13)},
    {"slug": "rx-7700-xt", "model": "Radeon RX 7700 XT", "brand": "amd", "architecture": "RDNA 3",
     "generation": "RX 7000", "vram_gb": 12, "tdp_watts": 245, "msrp_usd": Decimal("449.00"),
     "release_date": date(2023, 9, 6)},
]


async def seed_gpus():
    """Upsert every seed GPU."""
    print("Seeding GPUs...")
    db = Database()
    try:
        async with db.session() as session:
            repo = Repository(session)
            for entry in GPU_SEED:
                gpu = validate_gpu_input(entry)
                await repo.upsert_gpu({**gpu.model_dump(), "active": True})
                print(f"  - {gpu.model}")
            await session.commit()
    finally:
        await db.close()

    print(f"\nSeeded {len(GPU_SEED)} GPUs successfully.")


if __name__ == "__main__":
    asyncio.run(seed_gpus())
