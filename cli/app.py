from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

import typer
import uvicorn

from app.main import create_app
from cli.client import ExporterClient
from cli.config import load_config
from cli.render import render_measurement, render_samples
from logging_config import configure_logging
from services.errors import RefreshError
from services.parser import MeasurementParser
from settings import Settings, get_settings, parse_listen_address
from storage.device_share import build_share


app = typer.Typer(
    help="Run and probe the AirVisual Prometheus exporter.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


@dataclass
class DeviceOptions:
    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = None
    share: Optional[str] = None
    file: Optional[str] = None
    timeout: Optional[float] = None


def _apply_device_options(settings: Settings, options: DeviceOptions) -> Settings:
    overrides = {
        "device_host": options.host,
        "device_port": options.port,
        "device_username": options.user,
        "device_password": options.password,
        "device_share": options.share,
        "device_file_path": options.file,
    }
    changes = {key: value for key, value in overrides.items() if value is not None}
    if options.timeout is not None:
        changes["device_timeout"] = options.timeout if options.timeout > 0 else None
    return replace(settings, **changes)


_HOST_OPTION = typer.Option(None, "--host", help="Air quality device hostname.")
_PORT_OPTION = typer.Option(None, "--port", help="Air quality device SMB port.")
_USER_OPTION = typer.Option(None, "--user", help="SMB user name.")
_PASSWORD_OPTION = typer.Option(None, "--pass", "--password", help="SMB password.")
_SHARE_OPTION = typer.Option(None, "--share", help="SMB share holding the measurements.")
_FILE_OPTION = typer.Option(None, "--file", help="Measurement document path within the share.")
_TIMEOUT_OPTION = typer.Option(
    None, "--timeout", help="Seconds allowed per device step (0 disables the bound)."
)


@app.command("serve")
def serve_command(
    host: Optional[str] = _HOST_OPTION,
    port: Optional[int] = _PORT_OPTION,
    user: Optional[str] = _USER_OPTION,
    password: Optional[str] = _PASSWORD_OPTION,
    share: Optional[str] = _SHARE_OPTION,
    file: Optional[str] = _FILE_OPTION,
    timeout: Optional[float] = _TIMEOUT_OPTION,
    listen: Optional[str] = typer.Option(
        None, "--listen", help="HTTP server address and port, e.g. ':1280'."
    ),
    single_flight: Optional[bool] = typer.Option(
        None,
        "--single-flight/--no-single-flight",
        help="Collapse concurrent scrapes into one device round trip.",
    ),
) -> None:
    """Serve /metrics, refreshing from the device on every scrape."""
    settings = _apply_device_options(
        get_settings(),
        DeviceOptions(host, port, user, password, share, file, timeout),
    )
    if listen is not None:
        try:
            listen_host, listen_port = parse_listen_address(listen)
        except ValueError as exc:
            raise typer.BadParameter(str(exc), param_hint="--listen") from exc
        settings = replace(settings, listen_host=listen_host, listen_port=listen_port)
    if single_flight is not None:
        settings = replace(settings, single_flight=single_flight)

    configure_logging(settings.log_level)
    typer.echo(f"Serving metrics on {settings.listen_address} ...")
    uvicorn.run(
        create_app(settings),
        host=settings.listen_host,
        port=settings.listen_port,
        log_config=None,
    )


@app.command("read")
def read_command(
    host: Optional[str] = _HOST_OPTION,
    port: Optional[int] = _PORT_OPTION,
    user: Optional[str] = _USER_OPTION,
    password: Optional[str] = _PASSWORD_OPTION,
    share: Optional[str] = _SHARE_OPTION,
    file: Optional[str] = _FILE_OPTION,
    timeout: Optional[float] = _TIMEOUT_OPTION,
) -> None:
    """Read the device once and print the latest measurement."""
    settings = _apply_device_options(
        get_settings(),
        DeviceOptions(host, port, user, password, share, file, timeout),
    )
    device = build_share(settings)
    typer.echo(f"Reading {device.path} from {device.share_path} ...")
    try:
        batch = MeasurementParser().parse(device.read_document())
    except RefreshError as exc:
        typer.secho(f"Read failed ({exc.kind}): {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    render_measurement(batch.latest, len(batch))


@app.command("scrape")
def scrape_command(
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Exporter base URL (defaults to EXPORTER_BASE_URL env or http://localhost:1280).",
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the scrape response."
    ),
) -> None:
    """Scrape a running exporter and print its gauges."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ExporterClient(config)
    try:
        samples = client.scrape()
    finally:
        client.close()
    render_samples(samples)


def main() -> None:
    app()
