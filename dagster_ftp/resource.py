"""Dagster resource exposing an :class:`~dagster_ftp.handler.FTPHandler`."""

import dagster as dg
from dagster import InitResourceContext
from pydantic import Field, PrivateAttr

from dagster_ftp.config import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_COPY_MEMORY_BUFFER_SIZE,
    DEFAULT_DATA_TIMEOUT,
    DEFAULT_KEEPALIVE_INTERVAL,
    DEFAULT_PORT,
    DEFAULT_TEMPORARY_FILE_PREFIX,
    DEFAULT_TEMPORARY_FILE_SUFFIX,
    DEFAULT_TRANSFER_BUFFER_SIZE,
    DataConnectionMode,
    FTPConfig,
)
from dagster_ftp.handler import FTPHandler

logger = dg.get_dagster_logger(__name__)


class FTPResource(dg.ConfigurableResource):
    """A Dagster resource for file operations on an FTP server.

    One connection is opened when the run starts and closed when it ends. It
    is checked before every operation and reopened transparently if the
    server dropped it.

    Example:

        .. code-block:: python

            from dagster import Definitions, EnvVar, asset
            from dagster_ftp import FTPResource

            @asset
            def daily_export(ftp: FTPResource):
                handler = ftp.get_handler()
                names = handler.list_file_names("/exports")
                for name in names:
                    handler.move_file(f"/exports/{name}", f"/archive/{name}")
                return {"files_archived": len(names)}

            defs = Definitions(
                assets=[daily_export],
                resources={
                    "ftp": FTPResource(
                        host="ftp.example.com",
                        username="myuser",
                        password=EnvVar("FTP_PASSWORD"),
                    )
                },
            )

    :param host: The hostname or IP address of the FTP server
    :type host: str
    :param port: The port number for the control connection
    :type port: int
    :param username: The username for authentication
    :type username: str
    :param password: The password for authentication
    :type password: str or None
    :param charset: Encoding of commands and file names
    :type charset: str
    :param connect_timeout: Connection timeout in seconds
    :type connect_timeout: int
    :param data_timeout: Socket timeout of data connections in seconds, <= 0 for none
    :type data_timeout: int
    :param keepalive_interval: Seconds between keepalive NOOPs, less than
        connect_timeout
    :type keepalive_interval: int
    :param data_connection_mode: One of ``passive``, ``active`` or ``active_remote``
    :type data_connection_mode: str
    """

    host: str = Field(description="The hostname or IP address of the FTP server")
    port: int = Field(default=DEFAULT_PORT, description="The port number")
    username: str = Field(description="The username for authentication")
    password: str | None = Field(
        default=None, description="The password for authentication"
    )
    charset: str = Field(
        default="utf-8", description="Encoding of commands and file names"
    )
    connect_timeout: int = Field(
        default=DEFAULT_CONNECT_TIMEOUT, description="Connection timeout in seconds"
    )
    data_timeout: int = Field(
        default=DEFAULT_DATA_TIMEOUT,
        description="Socket timeout of data connections in seconds, <= 0 for none",
    )
    keepalive_interval: int = Field(
        default=DEFAULT_KEEPALIVE_INTERVAL,
        description="Send a NOOP to the server every keepalive_interval seconds",
    )
    transfer_buffer_size: int = Field(
        default=DEFAULT_TRANSFER_BUFFER_SIZE,
        description="Block size of transfers in bytes, <= 0 for the ftplib default",
    )
    temporary_file_directory: str | None = Field(
        default=None,
        description=(
            "Directory for copy buffers that overflow memory, "
            "the system temp directory if not set"
        ),
    )
    temporary_file_prefix: str = Field(default=DEFAULT_TEMPORARY_FILE_PREFIX)
    temporary_file_suffix: str = Field(default=DEFAULT_TEMPORARY_FILE_SUFFIX)
    copy_memory_buffer_size: int = Field(
        default=DEFAULT_COPY_MEMORY_BUFFER_SIZE,
        description="Bytes of a copied file kept in memory before spilling to disk",
    )
    data_connection_mode: str = Field(
        default=DataConnectionMode.PASSIVE.value,
        description="How data connections are opened: passive, active or active_remote",
    )
    active_remote_host: str | None = Field(
        default=None,
        description="Host announced in PORT commands in active_remote mode",
    )
    active_remote_port: int | None = Field(
        default=None,
        description="Port announced in PORT commands in active_remote mode",
    )

    _handler: FTPHandler | None = PrivateAttr(default=None)

    @classmethod
    def _is_dagster_maintained(cls) -> bool:
        return False

    def get_config(self) -> FTPConfig:
        """Build the validated handler configuration from the resource fields."""
        values = dict(
            host=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            charset=self.charset,
            connect_timeout=self.connect_timeout,
            data_timeout=self.data_timeout,
            keepalive_interval=self.keepalive_interval,
            transfer_buffer_size=self.transfer_buffer_size,
            temporary_file_prefix=self.temporary_file_prefix,
            temporary_file_suffix=self.temporary_file_suffix,
            copy_memory_buffer_size=self.copy_memory_buffer_size,
            data_connection_mode=DataConnectionMode(self.data_connection_mode),
            active_remote_host=self.active_remote_host,
            active_remote_port=self.active_remote_port,
        )
        if self.temporary_file_directory is not None:
            values["temporary_file_directory"] = self.temporary_file_directory
        return FTPConfig(**values)

    def setup_for_execution(self, context: InitResourceContext) -> None:
        self._handler = FTPHandler(self.get_config())
        self._handler.start()

    def teardown_after_execution(self, context: InitResourceContext) -> None:
        if self._handler is not None:
            self._handler.stop()
            self._handler = None

    def get_handler(self) -> FTPHandler:
        """Return the started handler of this resource.

        Outside of a Dagster run the handler is created and started on first
        call; stop it with ``get_handler().stop()`` when done.

        :return: The handler bound to this resource
        :rtype: FTPHandler
        """
        if self._handler is None:
            logger.debug(
                f"Starting FTP handler for {self.host}:{self.port} outside of a run"
            )
            self._handler = FTPHandler(self.get_config())
            self._handler.start()
        return self._handler
