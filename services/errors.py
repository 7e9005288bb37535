"""Failure types raised while refreshing gauges from the sensor device."""

from __future__ import annotations

from typing import Optional


class RefreshError(Exception):
    """Base class for every failure that aborts a refresh."""

    kind = "refresh"


class DeviceError(RefreshError):
    """The SMB round trip to the device failed."""

    kind = "device"


class DeviceConnectionError(DeviceError):
    kind = "connection"


class AuthenticationError(DeviceError):
    kind = "authentication"


class MountError(DeviceError):
    kind = "mount"


class FileOpenError(DeviceError):
    kind = "file_open"


class ReadError(DeviceError):
    kind = "read"


class DeviceTimeoutError(DeviceError):
    """A device step did not finish within the configured timeout."""

    kind = "timeout"

    def __init__(self, message: str, step: str, timeout: Optional[float]) -> None:
        super().__init__(message)
        self.step = step
        self.timeout = timeout


class MeasurementError(RefreshError):
    """The measurement document could not be turned into a batch."""

    kind = "measurement"


class DecodeError(MeasurementError):
    kind = "decode"


class EmptyDataError(MeasurementError):
    kind = "empty_data"
