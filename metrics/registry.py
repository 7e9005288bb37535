"""Process-wide Prometheus gauges for the latest device measurement."""

from __future__ import annotations

from functools import lru_cache
from threading import Lock
from typing import Dict, Mapping, Optional, Tuple

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, generate_latest

from models.measurements import MEASUREMENT_FIELDS, Measurement

# field name -> (metric name, help text)
GAUGE_SPECS: Mapping[str, Tuple[str, str]] = {
    "co2_ppm": ("co2_ppm", "CO2 measurement level in part-per-million (ppm)"),
    "humidity_pct": ("humidity", "Relative humidity (%)"),
    "pm10": ("pm10", "PM10 particles"),
    "pm25": ("pm25", "PM25 particles"),
    "temperature_c": ("temp", "Temperature (C)"),
}


class GaugeRegistry:
    """Owns the five exported gauges and the lock guarding their updates.

    ``apply`` and ``render`` share one lock, so a scrape never renders a mix of
    two measurements even when refreshes overlap.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self._gauges: Dict[str, Gauge] = {
            field: Gauge(name, description, registry=self.registry)
            for field, (name, description) in GAUGE_SPECS.items()
        }
        self._lock = Lock()

    def set(self, field: str, value: float) -> None:
        gauge = self._gauge(field)
        with self._lock:
            gauge.set(value)

    def apply(self, measurement: Measurement) -> None:
        """Overwrite every gauge from a single measurement."""
        with self._lock:
            for field in MEASUREMENT_FIELDS:
                self._gauges[field].set(getattr(measurement, field))

    def value(self, field: str) -> float:
        self._gauge(field)
        metric_name = GAUGE_SPECS[field][0]
        sample = self.registry.get_sample_value(metric_name)
        return 0.0 if sample is None else sample

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return {field: self.value(field) for field in GAUGE_SPECS}

    def render(self) -> bytes:
        with self._lock:
            return generate_latest(self.registry)

    def _gauge(self, field: str) -> Gauge:
        try:
            return self._gauges[field]
        except KeyError as exc:
            raise KeyError(f"Unknown gauge field {field!r}.") from exc


@lru_cache
def build_default_gauges() -> GaugeRegistry:
    """Return the single registry shared by the refresher and the scrape endpoint."""
    return GaugeRegistry()
