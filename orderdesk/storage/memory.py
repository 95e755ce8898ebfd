import threading

from orderdesk.storage.base import Storage


class InMemoryStorage(Storage):
    """Process-local blob store for tests and single-process setups."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._blobs: dict[str, bytes] = {}

    def put(self, key: str, content: bytes) -> str:
        with self._lock:
            self._blobs[key] = bytes(content)
        return key

    def get(self, key: str) -> bytes:
        with self._lock:
            return self._blobs[key]
