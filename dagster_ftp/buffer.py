"""Staging buffer for server side copies.

Content is kept in memory up to a fixed size and spills the rest to a single
temporary file. The buffer is filled once, sealed, drained once, and disposed.
"""

import os
import tempfile
from enum import Enum

import dagster as dg

logger = dg.get_dagster_logger(__name__)


class BufferPhase(Enum):
    FILLING = "filling"
    DRAINING = "draining"
    DISPOSED = "disposed"


class _InMemory:
    def __init__(self):
        self.memory = bytearray()


class _SpilledToDisk:
    def __init__(self, memory: bytearray, path: str, file):
        self.memory = memory
        self.path = path
        self.file = file


class HybridBuffer:
    """A write-once, read-once byte buffer backed by memory and a temporary file.

    :param memory_size: Bytes kept in memory before spilling to disk
    :type memory_size: int
    :param directory: Directory of the overflow file
    :type directory: str
    :param prefix: Prefix of the overflow file name
    :type prefix: str
    :param suffix: Suffix of the overflow file name
    :type suffix: str

    Example:

        .. code-block:: python

            with HybridBuffer(1024 * 1024, "/tmp", "copy-", ".tmp") as buffer:
                ftp.retrbinary("RETR source.bin", buffer.write)
                buffer.seal()
                ftp.storbinary("STOR target.bin", buffer)
    """

    def __init__(self, memory_size: int, directory: str, prefix: str, suffix: str):
        if memory_size <= 0:
            raise ValueError(f"memory_size must be positive, got {memory_size}")
        self._memory_size = memory_size
        self._directory = directory
        self._prefix = prefix
        self._suffix = suffix
        self._state: _InMemory | _SpilledToDisk = _InMemory()
        self._phase = BufferPhase.FILLING
        self._memory_offset = 0
        self._size = 0

    @property
    def phase(self) -> BufferPhase:
        return self._phase

    @property
    def spilled(self) -> bool:
        return isinstance(self._state, _SpilledToDisk)

    @property
    def temporary_file_path(self) -> str | None:
        """Path of the overflow file, None while the content fits in memory."""
        return self._state.path if isinstance(self._state, _SpilledToDisk) else None

    @property
    def size(self) -> int:
        return self._size

    def _spill(self) -> _SpilledToDisk:
        fd, path = tempfile.mkstemp(
            suffix=self._suffix, prefix=self._prefix, dir=self._directory
        )
        try:
            file = os.fdopen(fd, "w+b")
        except OSError:
            os.close(fd)
            os.remove(path)
            raise
        logger.debug(
            f"Copy buffer exceeded {self._memory_size} bytes, spilling to {path}"
        )
        self._state = _SpilledToDisk(self._state.memory, path, file)
        return self._state

    def write(self, data: bytes) -> int:
        """Append ``data``. Usable as the callback of ``ftplib.FTP.retrbinary``."""
        if self._phase is not BufferPhase.FILLING:
            raise ValueError(f"Cannot write to a buffer in phase {self._phase.value}")
        view = memoryview(data)
        state = self._state
        room = self._memory_size - len(state.memory)
        if room > 0:
            state.memory += view[:room]
            view = view[room:]
        if len(view):
            if isinstance(state, _InMemory):
                state = self._spill()
            state.file.write(view)
        self._size += len(data)
        return len(data)

    def seal(self) -> None:
        """End the fill phase and rewind for reading."""
        if self._phase is not BufferPhase.FILLING:
            raise ValueError(f"Cannot seal a buffer in phase {self._phase.value}")
        if isinstance(self._state, _SpilledToDisk):
            self._state.file.flush()
            self._state.file.seek(0)
        self._phase = BufferPhase.DRAINING

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, memory first, then the overflow file.

        Usable as the file object of ``ftplib.FTP.storbinary``.
        """
        if self._phase is not BufferPhase.DRAINING:
            raise ValueError(f"Cannot read from a buffer in phase {self._phase.value}")
        state = self._state
        memory = state.memory
        if size is None or size < 0:
            chunk = bytes(memory[self._memory_offset :])
            self._memory_offset = len(memory)
            if isinstance(state, _SpilledToDisk):
                chunk += state.file.read()
            return chunk

        chunk = bytes(memory[self._memory_offset : self._memory_offset + size])
        self._memory_offset += len(chunk)
        if len(chunk) < size and isinstance(state, _SpilledToDisk):
            chunk += state.file.read(size - len(chunk))
        return chunk

    def dispose(self) -> None:
        """Free the memory and delete the overflow file. Safe to call more than once."""
        if self._phase is BufferPhase.DISPOSED:
            return
        self._phase = BufferPhase.DISPOSED
        state = self._state
        self._state = _InMemory()
        if isinstance(state, _SpilledToDisk):
            try:
                state.file.close()
            except OSError as exc:
                logger.warning(f"Failed to close temporary file {state.path}: {exc}")
            try:
                os.remove(state.path)
            except OSError as exc:
                logger.warning(f"Failed to delete temporary file {state.path}: {exc}")

    def __enter__(self) -> "HybridBuffer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.dispose()
