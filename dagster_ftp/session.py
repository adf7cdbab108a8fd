"""Lifecycle of the single FTP connection owned by a handler.

The session never takes the connection gate itself; every method is expected
to run while the caller holds it.
"""

import ftplib
import socket
from collections.abc import Callable

import dagster as dg

from dagster_ftp.config import DataConnectionMode, FTPConfig
from dagster_ftp.errors import (
    FTPConnectError,
    FTPHandlerNotStartedError,
    FTPLoginError,
)

logger = dg.get_dagster_logger(__name__)

FTPClientFactory = Callable[[FTPConfig], ftplib.FTP]


class _DataTimeoutFTP(ftplib.FTP):
    """Client whose data connections use their own socket timeout.

    ``data_timeout`` of None leaves data sockets blocking without a timeout.
    """

    data_timeout: float | None = None

    def ntransfercmd(self, cmd, rest=None):
        conn, size = super().ntransfercmd(cmd, rest)
        conn.settimeout(self.data_timeout)
        return conn, size


class _AdvertisedActiveFTP(_DataTimeoutFTP):
    """Active mode client that announces a fixed host and port in PORT/EPRT.

    The listening socket is bound to the announced port on all interfaces,
    for clients reachable through a port forward.
    """

    advertised_host: str = ""
    advertised_port: int = 0

    def makeport(self):
        sock = socket.create_server(
            ("", self.advertised_port), family=self.af, backlog=1
        )
        try:
            if self.af == socket.AF_INET:
                self.sendport(self.advertised_host, self.advertised_port)
            else:
                self.sendeprt(self.advertised_host, self.advertised_port)
        except BaseException:
            sock.close()
            raise
        if self.timeout is not None:
            sock.settimeout(self.timeout)
        return sock


def create_ftp_client(config: FTPConfig) -> ftplib.FTP:
    """Build an unconnected ``ftplib.FTP`` client configured for ``config``."""
    if config.data_connection_mode == DataConnectionMode.ACTIVE_REMOTE:
        client = _AdvertisedActiveFTP(encoding=config.charset)
        client.advertised_host = config.active_remote_host or ""
        client.advertised_port = config.active_remote_port or 0
    else:
        client = _DataTimeoutFTP(encoding=config.charset)
    client.data_timeout = config.data_socket_timeout
    client.set_pasv(config.data_connection_mode == DataConnectionMode.PASSIVE)
    return client


def is_connected(client: ftplib.FTP | None) -> bool:
    return client is not None and getattr(client, "sock", None) is not None


def force_disconnect(client: ftplib.FTP | None) -> None:
    """Log out if possible and close the control connection. Never raises."""
    if client is None:
        return
    if is_connected(client):
        try:
            client.quit()
        except Exception as exc:
            logger.warning(f"Failed to log out from FTP server: {exc}")
    try:
        client.close()
    except Exception as exc:
        logger.warning(f"Failed to close FTP connection: {exc}")


class FTPSession:
    """Owns one ``ftplib.FTP`` client and keeps it logged in.

    ``started`` tracks whether the owner wants a connection, independently of
    whether the physical connection is currently up. A lost connection is
    reopened lazily by :meth:`ensure_ready`.

    :param config: Connection settings
    :type config: FTPConfig
    :param client_factory: Builds the unconnected client,
        ``create_ftp_client`` by default
    :type client_factory: Callable[[FTPConfig], ftplib.FTP] or None
    """

    def __init__(
        self, config: FTPConfig, client_factory: FTPClientFactory | None = None
    ):
        self._config = config
        self._client_factory = client_factory or create_ftp_client
        self._client: ftplib.FTP | None = None
        self._started = False

    @property
    def _address(self) -> str:
        return f"{self._config.host}:{self._config.port}"

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        """Create the client and try to connect once.

        A failed connect is only logged; the connection is retried on first use.
        """
        if self._started:
            return
        self._client = self._client_factory(self._config)
        try:
            self.connect_and_login()
        except (FTPConnectError, FTPLoginError) as exc:
            logger.warning(
                f"Could not connect to FTP server {self._address} on start, "
                f"will retry on first use: {exc}"
            )
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        client, self._client = self._client, None
        force_disconnect(client)
        logger.info(f"Disconnected from FTP server {self._address}")

    def connect_and_login(self) -> None:
        """Open a fresh connection, log in and switch to binary mode.

        :raises FTPConnectError: If the server cannot be reached
        :raises FTPLoginError: If login or the switch to binary mode is refused
        """
        client = self._client
        if client is None:
            client = self._client = self._client_factory(self._config)
        if is_connected(client):
            force_disconnect(client)

        host, port = self._config.host, self._config.port
        try:
            client.connect(host, port, timeout=self._config.connect_timeout)
        except ftplib.all_errors as exc:
            client.close()
            raise FTPConnectError(
                f"Failed to connect to FTP server {host}:{port}: {exc}"
            ) from exc

        try:
            client.login(self._config.username, self._config.password or "")
            client.voidcmd("TYPE I")
        except ftplib.all_errors as exc:
            force_disconnect(client)
            raise FTPLoginError(
                f"Failed to log in to FTP server {host}:{port} "
                f"as {self._config.username}: {exc}"
            ) from exc
        logger.info(f"Connected to FTP server {host}:{port} as {self._config.username}")

    def ping(self) -> None:
        """Send a NOOP. Raises whatever the client raises."""
        if not is_connected(self._client):
            raise ConnectionError("FTP control connection is closed")
        self._client.voidcmd("NOOP")

    def ensure_status(self) -> None:
        """Ping the server and reconnect once if the ping fails.

        :raises FTPConnectError: If the reconnect cannot reach the server
        :raises FTPLoginError: If the reconnect cannot log in
        """
        try:
            self.ping()
            return
        except ftplib.all_errors as exc:
            ping_error = exc
        logger.info(f"FTP connection check failed, reconnecting: {ping_error}")
        try:
            self.connect_and_login()
        except (FTPConnectError, FTPLoginError) as exc:
            raise exc from ping_error

    def ensure_ready(self) -> ftplib.FTP:
        """Return a connected client, reconnecting if necessary.

        :raises FTPHandlerNotStartedError: If the session is not started
        """
        if not self._started:
            raise FTPHandlerNotStartedError("FTP handler is not started")
        self.ensure_status()
        return self._client

    def keepalive(self) -> None:
        """Ping and, if that fails, reconnect. Failures are logged, never raised."""
        if not self._started:
            return
        try:
            self.ping()
            logger.debug(f"Keepalive NOOP sent to {self._address}")
            return
        except ftplib.all_errors as exc:
            logger.warning(f"Keepalive NOOP failed, reconnecting: {exc}")
        try:
            self.connect_and_login()
        except (FTPConnectError, FTPLoginError) as exc:
            logger.warning(f"Keepalive reconnect failed: {exc}")

    def disconnect(self) -> None:
        """Drop the physical connection but stay started."""
        force_disconnect(self._client)
