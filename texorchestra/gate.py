"""
SerializationGate - admission lock + build lock.

A build request first tries the admission lock without blocking. If another
request already holds it (that request is waiting for the running build to
finish), the new request is rejected instead of queued. An admitted request
then blocks on the build lock and gives up the admission lock once it holds
the build lock, so at most one request can be waiting at any time.

    gate = SerializationGate()
    with gate.admit() as admitted:
        if not admitted:
            return  # rejected
        ...         # build lock held here, released on every exit path
"""

import threading
from contextlib import contextmanager
from typing import Iterator


class SerializationGate:
    """Two-phase lock serializing build requests."""

    def __init__(self):
        self._admission = threading.Lock()
        self._build = threading.Lock()

    def is_waiting(self) -> bool:
        """True when a request has been admitted and is waiting for the build lock."""
        return self._admission.locked()

    def is_building(self) -> bool:
        """True while the build lock is held."""
        return self._build.locked()

    def try_acquire(self) -> bool:
        """
        Admit and acquire the build lock.

        Returns:
            False if another request is already waiting (nothing is held),
            True once the build lock is held (must be paired with release())
        """
        if not self._admission.acquire(blocking=False):
            return False
        try:
            self._build.acquire()
        finally:
            self._admission.release()
        return True

    def release(self) -> None:
        """
        Release the build lock.

        Raises:
            RuntimeError: If the build lock is not held (double release)
        """
        self._build.release()

    @contextmanager
    def admit(self) -> Iterator[bool]:
        """Scoped admission: yields whether the request was admitted."""
        acquired = self.try_acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()
