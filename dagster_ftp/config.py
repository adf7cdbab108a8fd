"""Validated connection settings for :class:`~dagster_ftp.handler.FTPHandler`."""

import codecs
import os
import tempfile
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_PORT = 21
DEFAULT_CONNECT_TIMEOUT = 60
DEFAULT_DATA_TIMEOUT = 60
DEFAULT_KEEPALIVE_INTERVAL = 15
DEFAULT_TRANSFER_BUFFER_SIZE = 8192
DEFAULT_COPY_MEMORY_BUFFER_SIZE = 1024 * 1024
DEFAULT_TEMPORARY_FILE_PREFIX = "dagster-ftp-"
DEFAULT_TEMPORARY_FILE_SUFFIX = ".tmp"


class DataConnectionMode(str, Enum):
    """How data connections are established.

    ``passive``: the client connects to an address announced by the server
    (PASV/EPSV).
    ``active``: the server connects back to a port the client listens on
    (PORT/EPRT).
    ``active_remote``: like ``active``, but the host and port announced to the
    server are ``active_remote_host`` and ``active_remote_port``, for clients
    behind NAT or a port forward.
    """

    PASSIVE = "passive"
    ACTIVE = "active"
    ACTIVE_REMOTE = "active_remote"


class FTPConfig(BaseModel):
    """Connection settings of an FTP handler. Validated once, never mutated."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(
        min_length=1, description="The hostname or IP address of the FTP server"
    )
    port: int = Field(
        default=DEFAULT_PORT, ge=0, le=65535, description="The port number"
    )
    username: str = Field(
        min_length=1, description="The username for authentication"
    )
    password: str | None = Field(
        default=None, description="The password for authentication"
    )
    charset: str = Field(
        default="utf-8", description="Encoding of commands and file names"
    )
    connect_timeout: float = Field(
        default=DEFAULT_CONNECT_TIMEOUT,
        gt=0,
        description="Connection timeout in seconds",
    )
    data_timeout: float = Field(
        default=DEFAULT_DATA_TIMEOUT,
        description="Socket timeout of data connections in seconds, <= 0 for none",
    )
    keepalive_interval: float = Field(
        default=DEFAULT_KEEPALIVE_INTERVAL,
        gt=0,
        description="Send a NOOP to the server every keepalive_interval seconds",
    )
    transfer_buffer_size: int = Field(
        default=DEFAULT_TRANSFER_BUFFER_SIZE,
        description="Block size of transfers in bytes, <= 0 for the default",
    )
    temporary_file_directory: str = Field(
        default_factory=tempfile.gettempdir,
        description="Directory for copy buffers that overflow memory",
    )
    temporary_file_prefix: str = Field(default=DEFAULT_TEMPORARY_FILE_PREFIX)
    temporary_file_suffix: str = Field(default=DEFAULT_TEMPORARY_FILE_SUFFIX)
    copy_memory_buffer_size: int = Field(
        default=DEFAULT_COPY_MEMORY_BUFFER_SIZE,
        gt=0,
        description="Bytes of a copied file kept in memory before spilling to disk",
    )
    data_connection_mode: DataConnectionMode = Field(
        default=DataConnectionMode.PASSIVE
    )
    active_remote_host: str | None = Field(default=None)
    active_remote_port: int | None = Field(default=None, ge=1, le=65535)

    @field_validator("charset")
    @classmethod
    def _check_charset(cls, value: str) -> str:
        try:
            codecs.lookup(value)
        except LookupError as exc:
            raise ValueError(f"Unknown charset: {value}") from exc
        return value

    @field_validator("temporary_file_directory")
    @classmethod
    def _check_temporary_file_directory(cls, value: str) -> str:
        try:
            os.makedirs(value, exist_ok=True)
        except OSError as exc:
            raise ValueError(
                f"Cannot create temporary file directory {value}: {exc}"
            ) from exc
        if not os.path.isdir(value):
            raise ValueError(f"Temporary file directory is not a directory: {value}")
        if not os.access(value, os.R_OK | os.W_OK):
            raise ValueError(
                f"Temporary file directory is not readable and writable: {value}"
            )
        return value

    @model_validator(mode="after")
    def _check_intervals_and_mode(self) -> "FTPConfig":
        if self.keepalive_interval >= self.connect_timeout:
            raise ValueError(
                f"keepalive_interval ({self.keepalive_interval}) must be less than "
                f"connect_timeout ({self.connect_timeout})"
            )
        if self.data_connection_mode == DataConnectionMode.ACTIVE_REMOTE and (
            not self.active_remote_host or self.active_remote_port is None
        ):
            raise ValueError(
                "active_remote_host and active_remote_port are required "
                "when data_connection_mode is active_remote"
            )
        return self

    @property
    def transfer_blocksize(self) -> int:
        """Block size handed to ``storbinary``/``retrbinary``."""
        if self.transfer_buffer_size > 0:
            return self.transfer_buffer_size
        return DEFAULT_TRANSFER_BUFFER_SIZE

    @property
    def data_socket_timeout(self) -> float | None:
        """Timeout set on data sockets, None when ``data_timeout`` is <= 0."""
        return self.data_timeout if self.data_timeout > 0 else None
