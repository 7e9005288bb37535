"""Decoding of the device's measurement document."""

from __future__ import annotations

from pydantic import ValidationError

from app.schemas import MeasurementDocument, MeasurementPayload
from models.measurements import Measurement, MeasurementBatch
from services.errors import DecodeError


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "document"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def _to_measurement(payload: MeasurementPayload) -> Measurement:
    return Measurement(
        co2_ppm=payload.co2_ppm,
        humidity_pct=payload.humidity_pct,
        pm10=payload.pm10,
        pm25=payload.pm25,
        temperature_c=payload.temperature_c,
    )


class MeasurementParser:
    """Pure decoding component that can be unit tested in isolation."""

    def parse(self, raw: bytes) -> MeasurementBatch:
        """Decode ``raw`` into a non-empty batch, or raise.

        Raises ``DecodeError`` for malformed documents and ``EmptyDataError``
        when the document is well formed but carries no measurements.
        """
        try:
            document = MeasurementDocument.model_validate_json(raw)
        except ValidationError as exc:
            raise DecodeError(
                f"sensor returned malformed data: {_describe_validation_error(exc)}"
            ) from exc

        return MeasurementBatch.of(_to_measurement(item) for item in document.measurements)
