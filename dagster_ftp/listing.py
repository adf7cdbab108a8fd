"""Directory listings over MLSD, with a LIST fallback for older servers."""

import ftplib

import dagster as dg

from dagster_ftp.models import FTPFileInfo

logger = dg.get_dagster_logger(__name__)

# Reply codes of servers that do not implement MLSD.
_MLSD_UNSUPPORTED = ("500", "501", "502", "504")


def _reply_code(exc: BaseException) -> str:
    return str(exc)[:3]


def _is_entry_line(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and not stripped.lower().startswith("total")


def list_directory(client: ftplib.FTP, path: str = "") -> list[FTPFileInfo]:
    """List the entries of ``path`` (the working directory by default).

    The ``.`` and ``..`` entries are never returned.
    """
    try:
        return [
            FTPFileInfo.from_mlsd_facts(name, facts)
            for name, facts in client.mlsd(path)
            if facts.get("type", "").lower() not in ("cdir", "pdir")
            and name not in (".", "..")
        ]
    except ftplib.error_perm as exc:
        if _reply_code(exc) not in _MLSD_UNSUPPORTED:
            raise
        logger.debug(f"MLSD not supported by server ({exc}), falling back to LIST")

    lines: list[str] = []
    client.retrlines(f"LIST {path}" if path else "LIST", lines.append)
    entries = []
    for line in lines:
        if not _is_entry_line(line):
            continue
        info = FTPFileInfo.from_list_line(line)
        if info is None:
            logger.debug(f"Skipping unrecognized LIST line: {line!r}")
        elif info.filename not in (".", ".."):
            entries.append(info)
    return entries


def exists_entry(client: ftplib.FTP, name: str) -> bool:
    """Whether ``LIST name`` in the working directory describes anything.

    A negative reply counts as "does not exist" only when no entry was
    received before it; otherwise the reply error propagates. A directory
    with no entries is reported as not existing.
    """
    lines: list[str] = []
    try:
        client.retrlines(f"LIST {name}", lines.append)
    except (ftplib.error_perm, ftplib.error_temp):
        if any(_is_entry_line(line) for line in lines):
            raise
        return False
    return any(_is_entry_line(line) for line in lines)
