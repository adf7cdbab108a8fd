"""Positioning of the remote working directory."""

import ftplib
from collections.abc import Sequence

import dagster as dg

logger = dg.get_dagster_logger(__name__)

ROOT_PATH = "/"


def enter_directory(client: ftplib.FTP, paths: Sequence[str]) -> None:
    """Change into ``/paths[0]/paths[1]/...``, creating every missing directory.

    A segment that cannot be entered is assumed not to exist: it is created
    and then entered. Any other failure propagates.

    :param client: Connected FTP client
    :type client: ftplib.FTP
    :param paths: Directory segments relative to the server root
    :type paths: Sequence[str]
    """
    client.cwd(ROOT_PATH)
    for segment in paths:
        try:
            client.cwd(segment)
        except ftplib.error_perm:
            logger.debug(f"Creating missing FTP directory {segment}")
            client.mkd(segment)
            client.cwd(segment)
