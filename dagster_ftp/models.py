"""Value types shared by the FTP handler: remote locations and listing entries."""

import re
from datetime import datetime, timezone
from enum import Enum

import dagster as dg
from dagster_shared.record import record

_UNIX_LIST_LINE = re.compile(
    r"^(?P<mode>[bcdlps-][rwxsStT-]{9})[+@.]?\s+\d+\s+\S+\s+\S+\s+(?P<size>\d+)\s+"
    r"\w{3}\s+\d{1,2}\s+(?:\d{1,2}:\d{2}|\d{4})\s(?P<name>.+)$"
)
_DOS_LIST_LINE = re.compile(
    r"^\d{2}-\d{2}-\d{2,4}\s+\d{1,2}:\d{2}(?:AM|PM)?\s+"
    r"(?:(?P<dir><DIR>)|(?P<size>\d+))\s+(?P<name>.+)$",
    re.IGNORECASE,
)


class FTPFileType(str, Enum):
    """Type of an entry returned by a directory listing."""

    FILE = "file"
    DIRECTORY = "directory"
    SYMBOLIC_LINK = "symbolic_link"
    UNKNOWN = "unknown"


@record
class FTPFileLocation:
    """A location on the FTP server.

    A location is a sequence of directory segments relative to the server root,
    optionally followed by a file name. A location without a name names the
    directory formed by its segments.

    :param paths: Directory segments, outermost first
    :type paths: tuple[str, ...]
    :param name: File name inside the directory, or None for a directory location
    :type name: str or None

    Example:

        .. code-block:: python

            FTPFileLocation(paths=("exports", "2024"), name="data.csv")
            FTPFileLocation.parse("/exports/2024/data.csv")  # same location
            FTPFileLocation.parse("/exports/2024/")  # directory location
    """

    paths: tuple[str, ...] = ()
    name: str | None = None

    @property
    def is_directory(self) -> bool:
        return self.name is None

    @property
    def directory_path(self) -> str:
        """Absolute path of the directory part, ``/`` for the root."""
        return "/" + "/".join(self.paths)

    @property
    def absolute_path(self) -> str:
        """Absolute path of the location, ``/a/b/name`` or ``/a/b/`` for directories."""
        prefix = "/" + "".join(f"{segment}/" for segment in self.paths)
        return prefix if self.name is None else prefix + self.name

    @classmethod
    def parse(cls, path: str, as_directory: bool = False) -> "FTPFileLocation":
        """Build a location from a ``/`` separated path.

        Empty and ``.`` segments are ignored. A trailing ``/`` or
        ``as_directory=True`` makes every segment a directory segment.
        """
        segments = [segment for segment in path.split("/") if segment not in ("", ".")]
        if as_directory or path.endswith("/") or not segments:
            return cls(paths=tuple(segments), name=None)
        return cls(paths=tuple(segments[:-1]), name=segments[-1])


def as_file_location(location: "FTPFileLocation | str") -> FTPFileLocation:
    """Normalize an argument that must name a file."""
    if isinstance(location, str):
        location = FTPFileLocation.parse(location)
    if location.name is None:
        raise ValueError(
            f"Expected a file location, got directory {location.absolute_path}"
        )
    return location


def as_directory_location(location: "FTPFileLocation | str") -> FTPFileLocation:
    """Normalize an argument that names a directory.

    Strings are read as directory paths. For a location that carries a name,
    only its directory segments are used.
    """
    if isinstance(location, str):
        return FTPFileLocation.parse(location, as_directory=True)
    if location.name is None:
        return location
    return FTPFileLocation(paths=location.paths)


class FTPFileInfoConfig(dg.Config):
    """Configuration for FTPFileInfo."""

    filename: str
    file_type: str
    size: int
    modified_time: str | None = None


@record
class FTPFileInfo:
    """An entry of a directory listing on the FTP server."""

    filename: str
    file_type: FTPFileType
    size: int
    modified_time: datetime | None = None

    @property
    def is_file(self) -> bool:
        return self.file_type == FTPFileType.FILE

    @property
    def is_dir(self) -> bool:
        return self.file_type == FTPFileType.DIRECTORY

    @property
    def is_link(self) -> bool:
        return self.file_type == FTPFileType.SYMBOLIC_LINK

    @classmethod
    def from_mlsd_facts(cls, filename: str, facts: dict[str, str]) -> "FTPFileInfo":
        """Create FTPFileInfo from an entry yielded by ``ftplib.FTP.mlsd``."""
        kind = facts.get("type", "").lower()
        if kind == "file":
            file_type = FTPFileType.FILE
        elif kind == "dir":
            file_type = FTPFileType.DIRECTORY
        elif kind.startswith("os.unix=symlink") or kind.startswith("os.unix=slink"):
            file_type = FTPFileType.SYMBOLIC_LINK
        else:
            file_type = FTPFileType.UNKNOWN

        modified_time = None
        if "modify" in facts:
            try:
                modified_time = datetime.strptime(
                    facts["modify"][:14], "%Y%m%d%H%M%S"
                ).replace(tzinfo=timezone.utc)
            except ValueError:
                modified_time = None

        size = facts.get("size") or facts.get("sizd") or "0"
        return cls(
            filename=filename,
            file_type=file_type,
            size=int(size) if size.isdigit() else 0,
            modified_time=modified_time,
        )

    @classmethod
    def from_list_line(cls, line: str) -> "FTPFileInfo | None":
        """Create FTPFileInfo from one line of a ``LIST`` reply.

        Unix ``ls -l`` style and DOS style lines are understood. Returns None
        for lines that describe no entry, such as the ``total`` header.
        """
        match = _UNIX_LIST_LINE.match(line)
        if match:
            mode = match.group("mode")
            name = match.group("name")
            if mode[0] == "d":
                file_type = FTPFileType.DIRECTORY
            elif mode[0] == "-":
                file_type = FTPFileType.FILE
            elif mode[0] == "l":
                file_type = FTPFileType.SYMBOLIC_LINK
                name = name.split(" -> ", 1)[0]
            else:
                file_type = FTPFileType.UNKNOWN
            return cls(
                filename=name, file_type=file_type, size=int(match.group("size"))
            )

        match = _DOS_LIST_LINE.match(line)
        if match:
            if match.group("dir"):
                return cls(
                    filename=match.group("name"),
                    file_type=FTPFileType.DIRECTORY,
                    size=0,
                )
            return cls(
                filename=match.group("name"),
                file_type=FTPFileType.FILE,
                size=int(match.group("size")),
            )
        return None

    def to_config_dict(self) -> dict:
        """Convert FTPFileInfo to a dict for config serialization."""
        return FTPFileInfoConfig(
            filename=self.filename,
            file_type=self.file_type.value,
            size=self.size,
            modified_time=(
                self.modified_time.isoformat() if self.modified_time else None
            ),
        ).model_dump()
