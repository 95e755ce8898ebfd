from abc import ABC, abstractmethod


class Storage(ABC):
    """Blob store for order artifacts and attachments."""

    @abstractmethod
    def put(self, key: str, content: bytes) -> str:
        """Store content under key; returns the key."""
        raise NotImplementedError

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Raises KeyError if the key does not exist."""
        raise NotImplementedError
