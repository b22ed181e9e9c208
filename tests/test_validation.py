"""Tests for catalog and watch input validation."""

from decimal import Decimal

import pytest

from gpuwatch.catalog.validation import validate_gpu_input, validate_watch_input
from gpuwatch.errors import CatalogValidationError

VALID_GPU = {
    "slug": "rtx-5070-ti",
    "model": "GeForce RTX 5070 Ti",
    "brand": "nvidia",
    "vram_gb": 16,
    "tdp_watts": 300,
    "msrp_usd": "749.00",
}


def test_valid_gpu():
    gpu = validate_gpu_input(VALID_GPU)
    assert gpu.msrp_usd == Decimal("749.00")
    assert gpu.release_date is None


@pytest.mark.parametrize(
    "field, value",
    [
        ("msrp_usd", "0"),
        ("msrp_usd", "-5.00"),
        ("msrp_usd", "749.999"),
        ("vram_gb", 0),
        ("brand", "intel"),
        ("slug", "RTX 5070 Ti"),
    ],
)
def test_invalid_gpu_field(field, value):
    with pytest.raises(CatalogValidationError) as exc_info:
        validate_gpu_input({**VALID_GPU, field: value})
    assert [e["field"] for e in exc_info.value.errors] == [field]


def test_missing_fields_reported_together():
    with pytest.raises(CatalogValidationError) as exc_info:
        validate_gpu_input({"slug": "rx-9070"})
    fields = {e["field"] for e in exc_info.value.errors}
    assert {"model", "brand", "vram_gb", "msrp_usd"} <= fields


def test_valid_watch():
    watch = validate_watch_input({"email": "buyer@example.com", "gpu_id": 3, "target_price_usd": "650"})
    assert watch.notify_in_stock is False
    assert watch.target_price_usd == Decimal("650")


@pytest.mark.parametrize(
    "data",
    [
        {"email": "not-an-email", "gpu_id": 1},
        {"email": "buyer@example.com", "gpu_id": 0},
        {"email": "buyer@example.com", "gpu_id": 1, "target_price_usd": "0"},
    ],
)
def test_invalid_watch(data):
    with pytest.raises(CatalogValidationError):
        validate_watch_input(data)
