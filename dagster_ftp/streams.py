"""File-like wrappers around an open FTP data connection.

A stream keeps the connection gate from the moment it is opened until it is
closed. Closing a stream finishes the transfer on the data connection, reads
the server's completion reply on the control connection and releases the gate,
whether or not those steps succeed.
"""

import ftplib
import socket

import dagster as dg

from dagster_ftp.config import DEFAULT_TRANSFER_BUFFER_SIZE
from dagster_ftp.errors import FTPIOError, FTPStreamClosedError
from dagster_ftp.gate import GateToken
from dagster_ftp.models import FTPFileLocation
from dagster_ftp.session import force_disconnect

logger = dg.get_dagster_logger(__name__)


class _CompletingStream:
    def __init__(
        self,
        client: ftplib.FTP,
        conn: socket.socket,
        file,
        token: GateToken,
        location: FTPFileLocation,
        blocksize: int = DEFAULT_TRANSFER_BUFFER_SIZE,
    ):
        self._client = client
        self._conn = conn
        self._file = file
        self._token = token
        self._location = location
        self._blocksize = blocksize
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def location(self) -> FTPFileLocation:
        return self._location

    def _check_open(self) -> None:
        if self._closed:
            raise FTPStreamClosedError(
                "I/O operation on closed FTP stream", self._location.absolute_path
            )

    def _close_data_connection(self) -> None:
        try:
            self._file.close()
        finally:
            self._conn.close()

    def _fail(self, message: str, exc: BaseException) -> FTPIOError:
        path = self._location.absolute_path
        logger.warning(f"{message} for {path}, dropping connection: {exc}")
        force_disconnect(self._client)
        return FTPIOError(f"{message}: {exc}", path)

    def close(self) -> None:
        """Finish the transfer and release the connection.

        :raises FTPStreamClosedError: If the stream is already closed
        :raises FTPIOError: If the data connection cannot be closed or the server
            reports the transfer as failed. The control connection is dropped and
            reopened on next use.
        """
        self._check_open()
        self._closed = True
        try:
            try:
                self._close_data_connection()
            except Exception as exc:
                raise self._fail("Failed to close FTP data connection", exc) from exc
            try:
                self._client.voidresp()
            except Exception as exc:
                raise self._fail("FTP transfer did not complete", exc) from exc
        finally:
            self._token.release()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if not self._closed:
            self.close()


class FTPInputStream(_CompletingStream):
    """Readable binary stream of a remote file, returned by ``open_input_stream``."""

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return False

    def read(self, size: int = -1) -> bytes:
        self._check_open()
        return self._file.read(size)

    def readinto(self, buffer) -> int:
        self._check_open()
        return self._file.readinto(buffer)

    def __iter__(self):
        self._check_open()
        return iter(lambda: self._file.read(self._blocksize), b"")


class FTPOutputStream(_CompletingStream):
    """Writable binary stream of a remote file, returned by ``open_output_stream``."""

    def readable(self) -> bool:
        return False

    def writable(self) -> bool:
        return True

    def write(self, data: bytes) -> int:
        self._check_open()
        return self._file.write(data)

    def flush(self) -> None:
        self._check_open()
        self._file.flush()
