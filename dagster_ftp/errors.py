"""Exceptions raised by the FTP handler.

Every failure that crosses the public API of :class:`~dagster_ftp.handler.FTPHandler`
is an :class:`FTPError`. Lower-level failures (``ftplib`` reply errors, socket
errors, unexpected end of stream) are chained as ``__cause__``.
"""


class FTPError(Exception):
    """Base class for all FTP handler errors.

    :param message: Human readable description of the failure
    :type message: str
    :param path: Absolute remote path the failure relates to, if any
    :type path: str or None
    """

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path is None:
            return self.message
        return f"{self.message} (path: {self.path})"


class FTPConnectError(FTPError): ...


class FTPLoginError(FTPError): ...


class FTPHandlerNotStartedError(FTPError): ...


class FTPIOError(FTPError): ...


class FTPFileNotFoundError(FTPIOError): ...


class FTPFileStoreError(FTPIOError): ...


class FTPFileRetrieveError(FTPIOError): ...


class FTPFileDeleteError(FTPIOError): ...


class FTPStreamOpenError(FTPIOError): ...


class FTPStreamClosedError(FTPError, ValueError):
    """Raised when a closed stream is read, written or closed again."""
