from __future__ import annotations

from typing import Any, Iterable, Mapping

import typer

from metrics.registry import GAUGE_SPECS
from models.measurements import MEASUREMENT_FIELDS, Measurement


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_measurement(measurement: Measurement, batch_size: int) -> None:
    echo_heading("Latest Measurement")
    echo_key_values((field, getattr(measurement, field)) for field in MEASUREMENT_FIELDS)
    if batch_size > 1:
        typer.echo()
        typer.echo(f"{batch_size - 1} older measurement(s) ignored.")


def render_samples(samples: Mapping[str, float]) -> None:
    echo_heading("Gauges")
    for metric_name, _help in GAUGE_SPECS.values():
        value = samples.get(metric_name)
        typer.echo(f"{metric_name}: {'missing' if value is None else value}")
