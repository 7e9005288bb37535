"""Pydantic schemas for the device document and the HTTP API layer."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MeasurementPayload(BaseModel):
    """One entry of the device's ``measurements`` array.

    The device encodes every number as a JSON string; bare JSON numbers are
    rejected the same way a non-numeric string is.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    co2_ppm: float = Field(..., alias="co2_ppm")
    humidity_pct: float = Field(..., alias="humidity_RH")
    pm10: float = Field(..., alias="pm10_ugm3")
    pm25: float = Field(..., alias="pm25_ugm3")
    temperature_c: float = Field(..., alias="temperature_C")

    @field_validator("*", mode="before")
    @classmethod
    def _parse_numeric_string(cls, value: object) -> float:
        if not isinstance(value, str):
            raise ValueError("expected a numeric string")
        try:
            return float(value)
        except ValueError as exc:
            raise ValueError(f"{value!r} is not a numeric string") from exc


class MeasurementDocument(BaseModel):
    """Top-level JSON object stored on the device share."""

    model_config = ConfigDict(extra="ignore")

    measurements: List[MeasurementPayload]


class HealthResponse(BaseModel):
    status: str = "ok"
    detail: str | None = None
