"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Iterable, Tuple

from services.errors import EmptyDataError


@dataclass(frozen=True, slots=True)
class Measurement:
    """A single air-quality sample reported by the device."""

    co2_ppm: float
    humidity_pct: float
    pm10: float
    pm25: float
    temperature_c: float


MEASUREMENT_FIELDS: Tuple[str, ...] = tuple(f.name for f in fields(Measurement))


@dataclass(frozen=True, slots=True)
class MeasurementBatch:
    """Readings from one document, most recent first."""

    measurements: Tuple[Measurement, ...]

    def __post_init__(self) -> None:
        if not self.measurements:
            raise EmptyDataError("sensor returned no data: measurement list is empty")

    @classmethod
    def of(cls, measurements: Iterable[Measurement]) -> "MeasurementBatch":
        return cls(measurements=tuple(measurements))

    @property
    def latest(self) -> Measurement:
        return self.measurements[0]

    def __len__(self) -> int:
        return len(self.measurements)
