"""Validation for catalog and watch input arriving at the admin/user boundary."""

from datetime import date
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, ValidationError

from gpuwatch.errors import CatalogValidationError


class GPUCreate(BaseModel):
    slug: str = Field(..., min_length=1, max_length=64, pattern=r"^[a-z0-9-]+$")
    model: str = Field(..., min_length=1, max_length=128)
    brand: Literal["nvidia", "amd"]
    architecture: Optional[str] = None
    generation: Optional[str] = None
    vram_gb: int = Field(..., gt=0)
    tdp_watts: Optional[int] = Field(None, gt=0)
    msrp_usd: Decimal = Field(..., gt=0, decimal_places=2)
    release_date: Optional[date] = None


class WatchCreate(BaseModel):
    email: EmailStr
    gpu_id: int = Field(..., gt=0)
    target_price_usd: Optional[Decimal] = Field(None, gt=0)
    notify_in_stock: bool = False


def _flatten(exc: ValidationError) -> list[dict[str, str]]:
    errors = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "__root__"
        errors.append({"field": field, "message": err["msg"]})
    return errors


def validate_gpu_input(data: dict[str, Any]) -> GPUCreate:
    """
    Validate a catalog entry.

    Raises:
        CatalogValidationError: With one {field, message} per problem
    """
    try:
        return GPUCreate.model_validate(data)
    except ValidationError as e:
        raise CatalogValidationError(_flatten(e)) from e


def validate_watch_input(data: dict[str, Any]) -> WatchCreate:
    try:
        return WatchCreate.model_validate(data)
    except ValidationError as e:
        raise CatalogValidationError(_flatten(e)) from e
