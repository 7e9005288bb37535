"""SMB access to the measurement document published by the sensor device."""

from __future__ import annotations

import logging
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import ExitStack
from threading import Lock
from typing import Any, Callable, Optional, Type

from smbprotocol.connection import Connection
from smbprotocol.exceptions import SMBException
from smbprotocol.file_info import FileAttributes
from smbprotocol.open import (
    CreateDisposition,
    CreateOptions,
    FilePipePrinterAccessMask,
    ImpersonationLevel,
    Open,
    ShareAccess,
)
from smbprotocol.session import Session
from smbprotocol.tree import TreeConnect

from services.errors import (
    AuthenticationError,
    DeviceConnectionError,
    DeviceError,
    DeviceTimeoutError,
    FileOpenError,
    MountError,
    ReadError,
)
from settings import Settings

logger = logging.getLogger(__name__)

# smbprotocol reports socket failures as ValueError and protocol failures as SMBException.
_TRANSPORT_ERRORS = (SMBException, OSError, ValueError)


class DeviceShare:
    """Reads one file from the device share through a fresh SMB session.

    Nothing is pooled: every ``read_document`` call dials, authenticates,
    mounts, opens and reads, then releases those resources in reverse order
    whatever the outcome.
    """

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        share: str,
        path: str,
        port: int = 445,
        timeout: Optional[float] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.share = share
        self.path = path
        self.timeout = timeout

    @property
    def share_path(self) -> str:
        return rf"\\{self.host}\{self.share}"

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def read_document(self) -> bytes:
        start_time = time.perf_counter()
        with ExitStack() as stack:
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="device-share")
            stack.callback(executor.shutdown, wait=False)

            connection = Connection(uuid.uuid4(), self.host, self.port, require_signing=False)
            close_connection = _ConnectionCloser(self, connection)
            # Registered before connect: the socket opens ahead of negotiation.
            stack.callback(close_connection)
            connect_timeout = 60 if self.timeout is None else self.timeout
            self._step(
                executor,
                "connect",
                DeviceConnectionError,
                f"failed to connect to device at {self.address}",
                lambda: connection.connect(timeout=connect_timeout),
                on_timeout=close_connection,
            )

            session = Session(
                connection,
                username=self.username,
                password=self.password,
                require_encryption=False,
                auth_protocol="ntlm",
            )
            self._step(
                executor,
                "authenticate",
                AuthenticationError,
                f"authentication as {self.username!r} on {self.address} failed",
                session.connect,
            )
            stack.callback(self._release, "session", session.disconnect)

            tree = TreeConnect(session, self.share_path)
            self._step(
                executor,
                "mount",
                MountError,
                f"failed to mount share {self.share_path}",
                tree.connect,
            )
            stack.callback(self._release, "mount", tree.disconnect)

            file_open = Open(tree, self.path)
            self._step(
                executor,
                "open",
                FileOpenError,
                f"failed to open {self.path!r} on {self.share_path}",
                lambda: file_open.create(
                    ImpersonationLevel.Impersonation,
                    FilePipePrinterAccessMask.GENERIC_READ,
                    FileAttributes.FILE_ATTRIBUTE_NORMAL,
                    ShareAccess.FILE_SHARE_READ | ShareAccess.FILE_SHARE_WRITE,
                    CreateDisposition.FILE_OPEN,
                    CreateOptions.FILE_NON_DIRECTORY_FILE,
                ),
            )
            stack.callback(self._release, "file", file_open.close)

            data = self._step(
                executor,
                "read",
                ReadError,
                f"failed to read {self.path!r} on {self.share_path}",
                lambda: _read_all(file_open, connection.max_read_size),
            )

        logger.debug(
            "Read measurement document",
            extra={
                "host": self.address,
                "share": self.share,
                "path": self.path,
                "byte_count": len(data),
                "duration_ms": int((time.perf_counter() - start_time) * 1000),
            },
        )
        return data

    def _step(
        self,
        executor: ThreadPoolExecutor,
        step: str,
        error_cls: Type[DeviceError],
        message: str,
        func: Callable[[], Any],
        on_timeout: Optional[Callable[[Future], Any]] = None,
    ) -> Any:
        future = executor.submit(func)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as exc:
            if on_timeout is not None:
                # Runs once the abandoned step settles, however late that is.
                future.add_done_callback(on_timeout)
            raise DeviceTimeoutError(
                f"{message}: {step} timed out after {self.timeout}s",
                step=step,
                timeout=self.timeout,
            ) from exc
        except _TRANSPORT_ERRORS as exc:
            raise error_cls(f"{message}: {exc}") from exc

    def _release(self, resource: str, close: Callable[[], Any]) -> None:
        try:
            close()
        except _TRANSPORT_ERRORS as exc:
            logger.warning(
                "Failed to release %s: %s",
                resource,
                exc,
                extra={"host": self.address, "share": self.share, "path": self.path},
            )


class _ConnectionCloser:
    """Disconnects a connection at most once.

    Called from teardown and, when the connect step timed out, again once the
    abandoned connect attempt settles. A connection whose transport was never
    created has nothing to close; smbprotocol raises ``AttributeError`` then.
    """

    def __init__(self, share: DeviceShare, connection: Connection) -> None:
        self._share = share
        self._connection = connection
        self._closed = False
        self._lock = Lock()

    def __call__(self, *_args: Any) -> None:
        with self._lock:
            if self._closed or getattr(self._connection, "transport", None) is None:
                return
            self._closed = True
        self._share._release("connection", self._connection.disconnect)


def _read_all(file_open: Open, chunk_size: int) -> bytes:
    size = file_open.end_of_file
    buffer = bytearray()
    offset = 0
    while offset < size:
        chunk = file_open.read(offset, min(chunk_size, size - offset))
        if not chunk:
            raise OSError(f"unexpected end of file at offset {offset} of {size}")
        buffer += chunk
        offset += len(chunk)
    return bytes(buffer)


def build_share(settings: Settings) -> DeviceShare:
    return DeviceShare(
        host=settings.device_host,
        port=settings.device_port,
        username=settings.device_username,
        password=settings.device_password,
        share=settings.device_share,
        path=settings.device_file_path,
        timeout=settings.device_timeout,
    )

