from dagster._core.libraries import DagsterLibraryRegistry

from dagster_ftp.config import (
    DataConnectionMode as DataConnectionMode,
    FTPConfig as FTPConfig,
)
from dagster_ftp.errors import (
    FTPConnectError as FTPConnectError,
    FTPError as FTPError,
    FTPFileDeleteError as FTPFileDeleteError,
    FTPFileNotFoundError as FTPFileNotFoundError,
    FTPFileRetrieveError as FTPFileRetrieveError,
    FTPFileStoreError as FTPFileStoreError,
    FTPHandlerNotStartedError as FTPHandlerNotStartedError,
    FTPIOError as FTPIOError,
    FTPLoginError as FTPLoginError,
    FTPStreamClosedError as FTPStreamClosedError,
    FTPStreamOpenError as FTPStreamOpenError,
)
from dagster_ftp.handler import FTPHandler as FTPHandler
from dagster_ftp.models import (
    FTPFileInfo as FTPFileInfo,
    FTPFileInfoConfig as FTPFileInfoConfig,
    FTPFileLocation as FTPFileLocation,
    FTPFileType as FTPFileType,
)
from dagster_ftp.resource import FTPResource as FTPResource
from dagster_ftp.streams import (
    FTPInputStream as FTPInputStream,
    FTPOutputStream as FTPOutputStream,
)

__version__ = "0.0.1"

DagsterLibraryRegistry.register("dagster-ftp", __version__, is_dagster_package=False)
