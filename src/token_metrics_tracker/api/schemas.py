"""Request and response models for the HTTP surface.

Field names on the wire are camelCase (``userEmail``, ``totalMarketLiquidity``)
to match what chart and alert clients already send and read.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from token_metrics_tracker.alerter.models import Comparison, MetricParameter


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class QueueJobsResponse(BaseModel):
    success: bool
    message: str


class MessageResponse(BaseModel):
    message: str


class PricePoint(_CamelModel):
    timestamp: datetime
    price: float


class LiquidityPoint(_CamelModel):
    timestamp: datetime
    total_market_liquidity: float


class HolderCountPoint(_CamelModel):
    timestamp: datetime
    total_holders: str | None


class TopHolderOut(_CamelModel):
    address: str
    amount: str | None
    pct: float
    insider: bool


class LiquidityLockOut(_CamelModel):
    timestamp: datetime
    market_pubkey: str = Field(alias="market_pubkey")
    lp_locked: str | None
    lp_locked_pct: float | None
    usdc_locked: float | None
    unlock_date: str | None


def _validate_parameter(value: str | None) -> str | None:
    if value is not None and MetricParameter.parse(value) is None:
        allowed = ", ".join(p.value for p in MetricParameter)
        raise ValueError(f"unknown parameter {value!r}; expected one of: {allowed}")
    return value


def _validate_comparison(value: str | None) -> str | None:
    if value is not None and Comparison.parse(value) is None:
        allowed = ", ".join(c.value for c in Comparison)
        raise ValueError(f"unknown comparison {value!r}; expected one of: {allowed}")
    return value


class AlertCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_email: str = Field(alias="userEmail", min_length=3)
    mint: str = Field(min_length=1)
    parameter: str = Field(alias="type")
    comparison: str
    threshold: float

    @field_validator("parameter")
    @classmethod
    def check_parameter(cls, v: str | None) -> str | None:
        return _validate_parameter(v)

    @field_validator("comparison")
    @classmethod
    def check_comparison(cls, v: str | None) -> str | None:
        return _validate_comparison(v)


class AlertUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_email: str = Field(alias="userEmail", min_length=3)
    mint: str | None = None
    parameter: str | None = Field(default=None, alias="type")
    comparison: str | None = None
    threshold: float | None = None
    is_active: bool | None = Field(default=None, alias="isActive")
    reset: bool = False

    @field_validator("parameter")
    @classmethod
    def check_parameter(cls, v: str | None) -> str | None:
        return _validate_parameter(v)

    @field_validator("comparison")
    @classmethod
    def check_comparison(cls, v: str | None) -> str | None:
        return _validate_comparison(v)


class AlertDelete(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_email: str = Field(alias="userEmail")


class AlertOut(_CamelModel):
    id: str
    user_email: str
    mint: str
    parameter: str
    comparison: str
    threshold: float
    is_active: bool
    triggered_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
