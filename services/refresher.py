"""Refresh orchestration: device read, decode, gauge update."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future
from functools import lru_cache
from threading import Lock
from typing import Optional, Protocol

from metrics.registry import GaugeRegistry, build_default_gauges
from models.measurements import Measurement
from services.errors import RefreshError
from services.parser import MeasurementParser
from settings import Settings, get_settings
from storage.device_share import build_share

logger = logging.getLogger(__name__)


class DocumentSource(Protocol):
    def read_document(self) -> bytes: ...


class RefreshService:
    """Coordinates the device share, the parser and the gauge registry.

    With ``single_flight`` enabled, refreshes that overlap an in-flight one
    wait for it and share its outcome instead of opening their own session.
    """

    def __init__(
        self,
        share: DocumentSource,
        parser: MeasurementParser,
        gauges: GaugeRegistry,
        single_flight: bool = False,
    ) -> None:
        self.share = share
        self.parser = parser
        self.gauges = gauges
        self.single_flight = single_flight
        self._in_flight: Optional[Future[Measurement]] = None
        self._flight_lock = Lock()

    def refresh(self) -> Measurement:
        """Pull the latest measurement from the device and export it."""
        if not self.single_flight:
            return self._refresh_once()

        with self._flight_lock:
            future = self._in_flight
            leader = future is None
            if leader:
                future = Future()
                self._in_flight = future

        if not leader:
            return future.result()

        try:
            measurement = self._refresh_once()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(measurement)
            return measurement
        finally:
            with self._flight_lock:
                self._in_flight = None

    def _refresh_once(self) -> Measurement:
        start_time = time.perf_counter()
        try:
            raw_bytes = self.share.read_document()
            batch = self.parser.parse(raw_bytes)
        except RefreshError as exc:
            logger.warning(
                "Refresh failed: %s",
                exc,
                extra={
                    "error_kind": exc.kind,
                    "step": getattr(exc, "step", None),
                    "duration_ms": int((time.perf_counter() - start_time) * 1000),
                },
            )
            raise

        measurement = batch.latest
        self.gauges.apply(measurement)
        logger.info(
            "Refreshed gauges from %d measurement(s)",
            len(batch),
            extra={"duration_ms": int((time.perf_counter() - start_time) * 1000)},
        )
        return measurement


@lru_cache
def build_default_refresher(settings: Optional[Settings] = None) -> RefreshService:
    """Factory that wires the refresher with the process-wide gauges."""
    resolved = settings if settings is not None else get_settings()
    return RefreshService(
        share=build_share(resolved),
        parser=MeasurementParser(),
        gauges=build_default_gauges(),
        single_flight=resolved.single_flight,
    )
