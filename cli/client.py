from __future__ import annotations

from typing import Dict

import httpx
import typer
from prometheus_client.parser import text_string_to_metric_families

from cli.config import CLIConfig


class ExporterClient:
    """Minimal HTTP client for a running exporter."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    def scrape(self) -> Dict[str, float]:
        """Trigger a scrape and return the exported samples by metric name."""
        try:
            response = self._client.get("/metrics")
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        except httpx.TransportError as exc:
            typer.secho(
                f"Could not reach exporter at {self._config.base_url}: {exc}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(code=1)

        samples: Dict[str, float] = {}
        for family in text_string_to_metric_families(response.text):
            for sample in family.samples:
                samples[sample.name] = sample.value
        return samples

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail = exc.response.text.strip()
        message = (
            f"Scrape failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
