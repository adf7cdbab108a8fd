"""Recursive emptying of a remote directory without recursion in Python.

The traversal keeps an explicit stack of frames, one per directory between the
target and the directory currently being emptied. Every directory is listed
once. A directory is removed only after all of its entries are gone, and the
target itself is kept.
"""

import ftplib
from collections import deque

import dagster as dg

from dagster_ftp.errors import FTPFileDeleteError
from dagster_ftp.listing import list_directory
from dagster_ftp.models import FTPFileInfo, FTPFileLocation
from dagster_ftp.navigator import enter_directory

logger = dg.get_dagster_logger(__name__)


class _ClearFrame:
    """Pending work in one directory.

    Frames are linked to their parent, so a frame stores only its own name.
    The target frame's name is the target's absolute path.
    """

    __slots__ = ("name", "parent", "entries")

    def __init__(
        self, name: str, parent: "_ClearFrame | None", entries: deque[FTPFileInfo]
    ):
        self.name = name
        self.parent = parent
        self.entries = entries

    @property
    def path(self) -> str:
        names = []
        frame = self
        while frame.parent is not None:
            names.append(frame.name)
            frame = frame.parent
        base = frame.name.rstrip("/")
        if not names:
            return base or "/"
        return base + "/" + "/".join(reversed(names))

    def child_path(self, name: str) -> str:
        return self.path.rstrip("/") + "/" + name


class DirectoryClearer:
    """Deletes everything below a directory using one FTP client.

    The working directory is moved one level at a time (``CWD child`` or
    ``CWD ..``), so the cost of positioning does not grow with depth.

    :param client: Connected FTP client, used exclusively for the duration of
        :meth:`clear`
    :type client: ftplib.FTP
    """

    def __init__(self, client: ftplib.FTP):
        self._client = client
        self._current: _ClearFrame | None = None
        self.deleted_files = 0
        self.removed_directories = 0

    def _position(self, frame: _ClearFrame) -> None:
        current = self._current
        if frame is current:
            return
        if current is not None and frame.parent is current:
            self._client.cwd(frame.name)
        elif current is not None and current.parent is frame:
            self._client.cwd("..")
        else:
            self._client.cwd(frame.path)
        self._current = frame

    def _delete_file(self, frame: _ClearFrame, entry: FTPFileInfo) -> None:
        try:
            self._client.delete(entry.filename)
        except (ftplib.error_perm, ftplib.error_temp) as exc:
            path = frame.child_path(entry.filename)
            raise FTPFileDeleteError(f"Failed to delete {path}: {exc}", path) from exc
        self.deleted_files += 1

    def _remove_directory(self, parent: _ClearFrame, name: str) -> None:
        try:
            self._client.rmd(name)
        except (ftplib.error_perm, ftplib.error_temp) as exc:
            path = parent.child_path(name)
            raise FTPFileDeleteError(
                f"Failed to remove directory {path}: {exc}", path
            ) from exc
        self.removed_directories += 1

    def clear(self, location: FTPFileLocation) -> None:
        """Empty the directory named by ``location``, creating it if it is missing."""
        enter_directory(self._client, location.paths)
        entries = deque(list_directory(self._client))
        target = _ClearFrame(location.directory_path, None, entries)
        self._current = target
        stack = [target]

        while stack:
            frame = stack.pop()
            self._position(frame)
            descended = False
            while frame.entries:
                entry = frame.entries.popleft()
                if not entry.is_dir:
                    self._delete_file(frame, entry)
                    continue
                child_entries = list_directory(self._client, entry.filename)
                if not child_entries:
                    self._remove_directory(frame, entry.filename)
                    continue
                stack.append(frame)
                stack.append(_ClearFrame(entry.filename, frame, deque(child_entries)))
                descended = True
                break
            if descended or frame is target:
                continue
            self._position(frame.parent)
            self._remove_directory(frame.parent, frame.name)

        logger.debug(
            f"Cleared {location.absolute_path}: deleted {self.deleted_files} files "
            f"and {self.removed_directories} directories"
        )
