"""Thread-safe, path based file operations over one FTP connection."""

import ftplib
import io
from collections.abc import Iterator
from contextlib import contextmanager
from typing import BinaryIO

import dagster as dg

from dagster_ftp.buffer import HybridBuffer
from dagster_ftp.clear import DirectoryClearer
from dagster_ftp.config import FTPConfig
from dagster_ftp.errors import (
    FTPError,
    FTPFileDeleteError,
    FTPFileNotFoundError,
    FTPFileRetrieveError,
    FTPFileStoreError,
    FTPIOError,
    FTPStreamOpenError,
)
from dagster_ftp.gate import ConnectionGate
from dagster_ftp.keepalive import KeepaliveScheduler, ScheduledTask
from dagster_ftp.listing import exists_entry, list_directory
from dagster_ftp.models import (
    FTPFileInfo,
    FTPFileLocation,
    as_directory_location,
    as_file_location,
)
from dagster_ftp.navigator import enter_directory
from dagster_ftp.session import FTPClientFactory, FTPSession
from dagster_ftp.streams import FTPInputStream, FTPOutputStream

logger = dg.get_dagster_logger(__name__)

LocationLike = FTPFileLocation | str

# Replies after which the control connection is still in step with the server.
_NEGATIVE_REPLIES = (ftplib.error_perm, ftplib.error_temp)


class FTPHandler:
    """File operations on an FTP server through a single, self-healing connection.

    All operations are serialized on one lock. Before each operation the
    connection is checked with a NOOP and reopened if it was lost, so callers
    never see a stale connection. A background keepalive sends a NOOP every
    ``keepalive_interval`` seconds while the handler is started.

    Streams returned by :meth:`open_input_stream` and :meth:`open_output_stream`
    keep the lock until they are closed; close them before calling any other
    operation from the same thread.

    Locations can be given as :class:`FTPFileLocation` or as ``/`` separated
    path strings. Directories on the way to a location are created when
    missing.

    :param config: Connection settings
    :type config: FTPConfig
    :param client_factory: Builds the unconnected ``ftplib.FTP`` client
    :type client_factory: Callable[[FTPConfig], ftplib.FTP] or None
    :param scheduler: Scheduler of the keepalive task
    :type scheduler: KeepaliveScheduler or None

    Example:

        .. code-block:: python

            from dagster_ftp import FTPConfig, FTPHandler

            config = FTPConfig(
                host="ftp.example.com", username="myuser", password="mypassword"
            )

            with FTPHandler(config) as ftp:
                ftp.store_file("/exports/2024/data.csv", b"a,b\\n1,2\\n")
                ftp.copy_file("/exports/2024/data.csv", "/archive/data.csv")

                with ftp.open_input_stream("/archive/data.csv") as stream:
                    header = stream.read(4)

                ftp.clear_directory("/exports")
    """

    def __init__(
        self,
        config: FTPConfig,
        *,
        client_factory: FTPClientFactory | None = None,
        scheduler: KeepaliveScheduler | None = None,
    ):
        self._config = config
        self._gate = ConnectionGate()
        self._session = FTPSession(config, client_factory)
        self._scheduler = scheduler or KeepaliveScheduler()
        self._keepalive_task: ScheduledTask | None = None

    @property
    def config(self) -> FTPConfig:
        return self._config

    def start(self) -> None:
        """Connect and schedule the keepalive. Does nothing if already started.

        A failure to connect is logged; the connection is retried on first use.
        """
        with self._gate:
            if self._session.started:
                return
            self._session.start()
            interval = self._config.keepalive_interval
            self._keepalive_task = self._scheduler.schedule(
                self._keepalive, interval, interval
            )

    def stop(self) -> None:
        """Cancel the keepalive and disconnect. Does nothing if not started."""
        with self._gate:
            if not self._session.started:
                return
            task, self._keepalive_task = self._keepalive_task, None
            if task is not None:
                task.cancel()
            self._session.stop()

    def is_started(self) -> bool:
        """Whether the handler is started, regardless of the connection state."""
        with self._gate:
            return self._session.started

    def _keepalive(self) -> None:
        with self._gate:
            self._session.keepalive()

    def __enter__(self) -> "FTPHandler":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    @contextmanager
    def _translate_errors(
        self,
        action: str,
        path: str | None,
        reply_error: type[FTPIOError] = FTPIOError,
    ) -> Iterator[None]:
        """Re-raise failures of ``action`` as :class:`FTPError`.

        Errors that already are :class:`FTPError` pass through. Server replies
        become ``reply_error``, everything else :class:`FTPIOError`. Unless the
        failure is a negative reply, the connection is dropped: a transfer
        aborted on the client side leaves its completion reply unread, and the
        next command would receive it. The next operation reconnects.
        """
        try:
            yield
        except FTPError:
            raise
        except _NEGATIVE_REPLIES as exc:
            raise reply_error(f"Failed to {action}: {exc}", path) from exc
        except Exception as exc:
            logger.warning(f"Failed to {action} {path}, dropping connection: {exc}")
            self._session.disconnect()
            if isinstance(exc, ftplib.Error):
                raise reply_error(f"Failed to {action}: {exc}", path) from exc
            raise FTPIOError(f"Failed to {action}: {exc}", path) from exc

    def _client_in(self, paths) -> ftplib.FTP:
        client = self._session.ensure_ready()
        enter_directory(client, paths)
        return client

    def exists_file(self, location: LocationLike) -> bool:
        """Check whether a file exists.

        :param location: Location of the file
        :type location: FTPFileLocation or str
        :return: True if a listing of the location returns at least one entry
        :rtype: bool
        """
        location = as_file_location(location)
        path = location.absolute_path
        with self._gate, self._translate_errors("check existence", path):
            client = self._client_in(location.paths)
            return exists_entry(client, location.name)

    def store_file(self, location: LocationLike, content: bytes) -> None:
        """Upload ``content`` as a file, replacing an existing file.

        :raises FTPFileStoreError: If the server refuses the upload
        """
        self.store_fileobj(location, io.BytesIO(content))

    def store_fileobj(self, location: LocationLike, fileobj: BinaryIO) -> None:
        """Upload everything readable from ``fileobj`` as a file.

        :param location: Location of the file
        :type location: FTPFileLocation or str
        :param fileobj: Binary file object, read until EOF. It is not closed.
        :type fileobj: BinaryIO
        :raises FTPFileStoreError: If the server refuses the upload
        :raises FTPIOError: If reading ``fileobj`` fails; the connection is
            reopened on next use
        """
        location = as_file_location(location)
        path = location.absolute_path
        with (
            self._gate,
            self._translate_errors("store file", path, FTPFileStoreError),
        ):
            client = self._client_in(location.paths)
            client.storbinary(
                f"STOR {location.name}",
                fileobj,
                blocksize=self._config.transfer_blocksize,
            )

    def retrieve_file(self, location: LocationLike) -> bytes:
        """Download a file into memory.

        :raises FTPFileRetrieveError: If the server refuses the download
        """
        buffer = io.BytesIO()
        self.retrieve_fileobj(location, buffer)
        return buffer.getvalue()

    def retrieve_fileobj(self, location: LocationLike, fileobj: BinaryIO) -> None:
        """Download a file, writing its content to ``fileobj``.

        :param location: Location of the file
        :type location: FTPFileLocation or str
        :param fileobj: Binary file object to write to. It is not closed.
        :type fileobj: BinaryIO
        :raises FTPFileRetrieveError: If the server refuses the download
        :raises FTPIOError: If writing to ``fileobj`` fails; the connection is
            reopened on next use
        """
        location = as_file_location(location)
        path = location.absolute_path
        with (
            self._gate,
            self._translate_errors("retrieve file", path, FTPFileRetrieveError),
        ):
            client = self._client_in(location.paths)
            client.retrbinary(
                f"RETR {location.name}",
                fileobj.write,
                blocksize=self._config.transfer_blocksize,
            )

    def delete_file(self, location: LocationLike) -> None:
        """Delete a file.

        :raises FTPFileDeleteError: If the server refuses the deletion
        """
        location = as_file_location(location)
        path = location.absolute_path
        with (
            self._gate,
            self._translate_errors("delete file", path, FTPFileDeleteError),
        ):
            client = self._client_in(location.paths)
            client.delete(location.name)

    def remove_directory(self, location: LocationLike) -> None:
        """Remove an empty directory. The root directory cannot be removed.

        :raises FTPFileDeleteError: If the location is the root, or the server
            refuses the removal (typically because the directory is not empty)
        """
        location = as_directory_location(location)
        path = location.absolute_path
        if not location.paths:
            raise FTPFileDeleteError("The root directory cannot be removed", path)
        with (
            self._gate,
            self._translate_errors("remove directory", path, FTPFileDeleteError),
        ):
            client = self._client_in(location.paths[:-1])
            client.rmd(location.paths[-1])

    def list_files(self, location: LocationLike) -> list[FTPFileInfo]:
        """List the entries of a directory.

        :param location: Location of the directory
        :type location: FTPFileLocation or str
        :return: Entries of the directory, without ``.`` and ``..``
        :rtype: list[FTPFileInfo]

        Example:

            .. code-block:: python

                for info in ftp.list_files("/exports"):
                    if info.is_file:
                        print(f"{info.filename}: {info.size} bytes")
        """
        location = as_directory_location(location)
        path = location.absolute_path
        with self._gate, self._translate_errors("list directory", path):
            client = self._client_in(location.paths)
            return list_directory(client)

    def list_file_names(self, location: LocationLike) -> list[str]:
        """List the names of the entries of a directory."""
        return [info.filename for info in self.list_files(location)]

    def _open_stream(
        self, location: LocationLike, command: str, mode: str, stream_cls
    ):
        location = as_file_location(location)
        path = location.absolute_path
        action = f"open stream for {command}"
        self._gate.acquire()
        try:
            with self._translate_errors(action, path, FTPStreamOpenError):
                client = self._client_in(location.paths)
                conn = client.transfercmd(f"{command} {location.name}")
                try:
                    file = conn.makefile(mode)
                except Exception:
                    conn.close()
                    raise
        except BaseException:
            self._gate.release()
            raise
        return stream_cls(
            client,
            conn,
            file,
            self._gate.hand_off(),
            location,
            blocksize=self._config.transfer_blocksize,
        )

    def open_input_stream(self, location: LocationLike) -> FTPInputStream:
        """Open a file for reading.

        The handler stays locked until the stream is closed. Iterating the
        stream yields chunks of ``transfer_buffer_size`` bytes.

        :raises FTPStreamOpenError: If the server refuses the download

        Example:

            .. code-block:: python

                with ftp.open_input_stream("/exports/big.bin") as stream:
                    for chunk in stream:
                        process(chunk)
        """
        return self._open_stream(location, "RETR", "rb", FTPInputStream)

    def open_output_stream(self, location: LocationLike) -> FTPOutputStream:
        """Open a file for writing, replacing an existing file.

        The handler stays locked until the stream is closed.

        :raises FTPStreamOpenError: If the server refuses the upload
        """
        return self._open_stream(location, "STOR", "wb", FTPOutputStream)

    def rename_file(
        self, old_location: LocationLike, new_location: LocationLike
    ) -> None:
        """Rename a file, replacing the target if it exists.

        Renaming a file to its own location leaves it untouched.

        :raises FTPFileNotFoundError: If the source does not exist
        """
        old_location = as_file_location(old_location)
        new_location = as_file_location(new_location)
        old_path = old_location.absolute_path
        new_path = new_location.absolute_path
        with self._gate, self._translate_errors("rename file", old_path):
            client = self._client_in(old_location.paths)
            if not exists_entry(client, old_location.name):
                raise FTPFileNotFoundError("File does not exist", old_path)
            if old_path == new_path:
                return

            enter_directory(client, new_location.paths)
            if exists_entry(client, new_location.name):
                with self._translate_errors(
                    "delete file", new_path, FTPFileDeleteError
                ):
                    client.delete(new_location.name)

            client.rename(old_path, new_path)

    def move_file(self, old_location: LocationLike, new_location: LocationLike) -> None:
        """Move a file. Same as :meth:`rename_file`."""
        self.rename_file(old_location, new_location)

    def clear_directory(self, location: LocationLike) -> None:
        """Delete everything inside a directory, keeping the directory itself.

        Fails on the first entry that cannot be deleted; entries deleted up
        to that point stay deleted.

        :raises FTPFileDeleteError: If an entry cannot be deleted
        """
        location = as_directory_location(location)
        path = location.absolute_path
        with self._gate, self._translate_errors("clear directory", path):
            client = self._session.ensure_ready()
            DirectoryClearer(client).clear(location)

    def copy_file(self, source: LocationLike, target: LocationLike) -> None:
        """Copy a file on the server, replacing the target if it exists.

        The content is staged locally, in memory up to ``copy_memory_buffer_size``
        bytes and in a temporary file beyond that. Other operations may run
        between downloading the source and uploading the target.

        :raises FTPFileRetrieveError: If the source cannot be downloaded
        :raises FTPFileStoreError: If the target cannot be uploaded
        :raises FTPIOError: If the content cannot be staged locally
        """
        source = as_file_location(source)
        target = as_file_location(target)
        config = self._config
        with HybridBuffer(
            config.copy_memory_buffer_size,
            config.temporary_file_directory,
            config.temporary_file_prefix,
            config.temporary_file_suffix,
        ) as buffer:
            self.retrieve_fileobj(source, buffer)
            buffer.seal()
            self.store_fileobj(target, buffer)
            logger.debug(
                f"Copied {source.absolute_path} to {target.absolute_path} "
                f"({buffer.size} bytes, spilled to disk: {buffer.spilled})"
            )

    def desc_file(self, location: LocationLike) -> FTPFileInfo:
        """Describe a file from the listing of its directory.

        :raises FTPFileNotFoundError: If the directory has no entry with that name
        """
        location = as_file_location(location)
        path = location.absolute_path
        with self._gate, self._translate_errors("describe file", path):
            client = self._client_in(location.paths)
            for info in list_directory(client):
                if info.filename == location.name:
                    return info
        raise FTPFileNotFoundError("File does not exist", path)
