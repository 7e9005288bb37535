from __future__ import annotations

import logging
import threading
import time
from typing import List, Optional

import pytest
from smbprotocol.exceptions import SMBException

from services.errors import (
    AuthenticationError,
    DeviceConnectionError,
    DeviceTimeoutError,
    FileOpenError,
    MountError,
    ReadError,
)
from settings import get_settings
from storage.device_share import DeviceShare, build_share

DOCUMENT = b'{"measurements": [{"co2_ppm": "412.5"}]}'


class FakeDevice:
    """Stands in for the smbprotocol classes and records every call."""

    def __init__(
        self,
        content: bytes = DOCUMENT,
        max_read_size: int = 65536,
        fail_at: Optional[str] = None,
        error: Optional[Exception] = None,
        hang_at: Optional[str] = None,
        release_error_at: Optional[str] = None,
        slow_at: Optional[str] = None,
        negotiate_error: Optional[Exception] = None,
    ) -> None:
        self.content = content
        self.max_read_size = max_read_size
        self.fail_at = fail_at
        self.error = error
        self.hang_at = hang_at
        self.release_error_at = release_error_at
        self.slow_at = slow_at
        self.negotiate_error = negotiate_error
        self.socket_open = False
        self.disconnected = threading.Event()
        self.calls: List[str] = []
        self.read_lengths: List[int] = []
        self.unblocked = threading.Event()
        self.short_read = False

    def hit(self, step: str) -> None:
        self.calls.append(step)
        if step == self.slow_at:
            time.sleep(0.3)
        if step == self.hang_at:
            self.unblocked.wait(timeout=2.0)
            raise OSError("socket closed")
        if step == self.fail_at:
            assert self.error is not None
            raise self.error

    def release(self, resource: str) -> None:
        self.calls.append(f"release:{resource}")
        if resource == "connection":
            self.unblocked.set()
        if resource == self.release_error_at:
            raise SMBException(f"{resource} already gone")

    def install(self, monkeypatch: pytest.MonkeyPatch) -> None:
        device = self

        class FakeConnection:
            def __init__(self, guid, server_name, port=445, require_signing=True) -> None:
                self.server_name = server_name
                self.port = port
                self.max_read_size = device.max_read_size
                self.transport = None

            def connect(self, timeout=60) -> None:
                device.hit("connect")
                self.transport = object()
                device.socket_open = True
                if device.negotiate_error is not None:
                    raise device.negotiate_error

            def disconnect(self) -> None:
                if self.transport is None:
                    raise AttributeError("'NoneType' object has no attribute 'close'")
                device.release("connection")
                device.socket_open = False
                device.disconnected.set()

        class FakeSession:
            def __init__(self, connection, username=None, password=None, **kwargs) -> None:
                self.username = username
                self.password = password

            def connect(self) -> None:
                device.hit("authenticate")

            def disconnect(self) -> None:
                device.release("session")

        class FakeTreeConnect:
            def __init__(self, session, share_name) -> None:
                device.calls.append(f"share:{share_name}")

            def connect(self) -> None:
                device.hit("mount")

            def disconnect(self) -> None:
                device.release("mount")

        class FakeOpen:
            def __init__(self, tree, name) -> None:
                self.end_of_file = 0
                device.calls.append(f"path:{name}")

            def create(self, *args, **kwargs) -> None:
                device.hit("open")
                self.end_of_file = len(device.content)

            def read(self, offset: int, length: int) -> bytes:
                device.hit("read")
                device.read_lengths.append(length)
                if device.short_read:
                    return b""
                return device.content[offset : offset + length]

            def close(self) -> None:
                device.release("file")

        monkeypatch.setattr("storage.device_share.Connection", FakeConnection)
        monkeypatch.setattr("storage.device_share.Session", FakeSession)
        monkeypatch.setattr("storage.device_share.TreeConnect", FakeTreeConnect)
        monkeypatch.setattr("storage.device_share.Open", FakeOpen)


def _share(timeout: Optional[float] = 1.0) -> DeviceShare:
    return DeviceShare(
        host="sensor.local",
        username="airvisual",
        password="secret",
        share="airvisual",
        path="latest_config_measurements.json",
        timeout=timeout,
    )


def _steps(device: FakeDevice) -> List[str]:
    return [call for call in device.calls if ":" not in call]


def _releases(device: FakeDevice) -> List[str]:
    return [call.split(":", 1)[1] for call in device.calls if call.startswith("release:")]


def test_read_document_returns_content_and_releases_in_reverse(monkeypatch) -> None:
    device = FakeDevice()
    device.install(monkeypatch)

    data = _share().read_document()

    assert data == DOCUMENT
    assert _steps(device) == ["connect", "authenticate", "mount", "open", "read"]
    assert _releases(device) == ["file", "mount", "session", "connection"]
    assert "share:\\\\sensor.local\\airvisual" in device.calls
    assert "path:latest_config_measurements.json" in device.calls


def test_read_document_reads_in_chunks(monkeypatch) -> None:
    content = b'{"measurements": []}' * 3
    device = FakeDevice(content=content, max_read_size=16)
    device.install(monkeypatch)

    assert _share().read_document() == content
    assert device.read_lengths[0] == 16
    assert sum(device.read_lengths) == len(content)
    assert len(device.read_lengths) == 4


def test_read_document_of_empty_file(monkeypatch) -> None:
    device = FakeDevice(content=b"")
    device.install(monkeypatch)

    assert _share().read_document() == b""
    assert "read" not in device.calls


@pytest.mark.parametrize(
    ("step", "error", "expected", "acquired"),
    [
        ("connect", ValueError("Failed to connect"), DeviceConnectionError, []),
        ("authenticate", SMBException("logon failure"), AuthenticationError, ["connection"]),
        ("mount", SMBException("bad network name"), MountError, ["session", "connection"]),
        (
            "open",
            SMBException("object name not found"),
            FileOpenError,
            ["mount", "session", "connection"],
        ),
        (
            "read",
            OSError("connection reset"),
            ReadError,
            ["file", "mount", "session", "connection"],
        ),
    ],
)
def test_each_step_failure_has_its_own_error(
    monkeypatch, step, error, expected, acquired
) -> None:
    device = FakeDevice(fail_at=step, error=error)
    device.install(monkeypatch)

    with pytest.raises(expected) as excinfo:
        _share().read_document()

    assert excinfo.value.__cause__ is error
    assert str(error) in str(excinfo.value)
    assert _steps(device)[-1] == step
    assert _releases(device) == acquired


def test_short_read_is_a_read_error(monkeypatch) -> None:
    device = FakeDevice()
    device.short_read = True
    device.install(monkeypatch)

    with pytest.raises(ReadError) as excinfo:
        _share().read_document()

    assert "unexpected end of file" in str(excinfo.value)
    assert _releases(device) == ["file", "mount", "session", "connection"]


def test_hung_step_times_out_and_still_tears_down(monkeypatch) -> None:
    device = FakeDevice(hang_at="mount")
    device.install(monkeypatch)

    with pytest.raises(DeviceTimeoutError) as excinfo:
        _share(timeout=0.05).read_document()

    assert excinfo.value.step == "mount"
    assert excinfo.value.timeout == 0.05
    assert excinfo.value.kind == "timeout"
    assert _releases(device) == ["session", "connection"]
    assert device.unblocked.is_set()


def test_release_failure_is_logged_without_masking_result(monkeypatch, caplog) -> None:
    device = FakeDevice(release_error_at="mount")
    device.install(monkeypatch)

    with caplog.at_level(logging.WARNING, logger="storage.device_share"):
        data = _share().read_document()

    assert data == DOCUMENT
    assert _releases(device) == ["file", "mount", "session", "connection"]
    assert any("Failed to release mount" in record.getMessage() for record in caplog.records)


def test_release_failure_does_not_replace_step_error(monkeypatch) -> None:
    device = FakeDevice(
        fail_at="open",
        error=SMBException("access denied"),
        release_error_at="session",
    )
    device.install(monkeypatch)

    with pytest.raises(FileOpenError):
        _share().read_document()

    assert _releases(device) == ["mount", "session", "connection"]


def test_build_share_uses_settings(monkeypatch) -> None:
    monkeypatch.setenv("AIRVISUAL_HOST", "10.0.0.7")
    monkeypatch.setenv("AIRVISUAL_PORT", "1445")
    monkeypatch.setenv("AIRVISUAL_SHARE", "sensor")
    get_settings.cache_clear()
    try:
        share = build_share(get_settings())
    finally:
        get_settings.cache_clear()

    assert share.address == "10.0.0.7:1445"
    assert share.share_path == "\\\\10.0.0.7\\sensor"
    assert share.path == "latest_config_measurements.json"
    assert share.timeout == 10.0


def test_negotiate_failure_closes_the_opened_socket(monkeypatch) -> None:
    device = FakeDevice(negotiate_error=SMBException("negotiate rejected"))
    device.install(monkeypatch)

    with pytest.raises(DeviceConnectionError) as excinfo:
        _share().read_document()

    assert "negotiate rejected" in str(excinfo.value)
    assert device.socket_open is False
    assert _releases(device) == ["connection"]
    assert "authenticate" not in device.calls


def test_connect_finishing_after_timeout_is_disconnected(monkeypatch) -> None:
    device = FakeDevice(slow_at="connect")
    device.install(monkeypatch)

    with pytest.raises(DeviceTimeoutError) as excinfo:
        _share(timeout=0.05).read_document()

    assert excinfo.value.step == "connect"
    assert device.disconnected.wait(timeout=2.0)
    assert device.socket_open is False
    assert _releases(device) == ["connection"]


def test_connect_failing_after_timeout_still_closes_socket(monkeypatch) -> None:
    device = FakeDevice(slow_at="connect", negotiate_error=SMBException("negotiate rejected"))
    device.install(monkeypatch)

    with pytest.raises(DeviceTimeoutError):
        _share(timeout=0.05).read_document()

    assert device.disconnected.wait(timeout=2.0)
    assert device.socket_open is False
    assert _releases(device) == ["connection"]
