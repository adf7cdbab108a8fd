"""The single lock guarding the FTP connection."""

import threading


class GateToken:
    """One-shot right to release a gate that was handed to a stream.

    Releasing more than once is a no-op, so every close path of a stream can
    release its token without tracking whether another path already did.
    """

    def __init__(self, gate: "ConnectionGate"):
        self._gate = gate
        self._guard = threading.Lock()
        self._released = False

    def release(self) -> bool:
        """Release the gate if this token still holds it.

        :return: True if this call released the gate, False if it was already released
        :rtype: bool
        """
        with self._guard:
            if self._released:
                return False
            self._released = True
        self._gate.release()
        return True


class ConnectionGate:
    """Exclusive lock held by whichever caller currently uses the connection.

    Non-streaming operations hold it for the duration of a ``with`` block.
    Stream-opening operations acquire it and, once the stream is set up,
    transfer ownership to the stream through :meth:`hand_off`.
    """

    def __init__(self):
        self._lock = threading.Lock()

    def acquire(self) -> None:
        self._lock.acquire()

    def release(self) -> None:
        self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()

    def hand_off(self) -> GateToken:
        """Return a token that releases this (already acquired) gate once."""
        return GateToken(self)

    def __enter__(self) -> "ConnectionGate":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
