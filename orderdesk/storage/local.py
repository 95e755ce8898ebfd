import os
from pathlib import Path

from orderdesk.core.config import settings
from orderdesk.storage.base import Storage


class LocalStorage(Storage):
    """Filesystem-backed blob store rooted at settings.storage_base_path."""

    def __init__(self, base_path: str | None = None) -> None:
        self.base_path = Path(base_path or settings.storage_base_path).resolve()

    def _path(self, key: str) -> Path:
        path = (self.base_path / key.lstrip("/")).resolve()
        if self.base_path not in path.parents:
            raise KeyError(key)
        return path

    def put(self, key: str, content: bytes) -> str:
        path = self._path(key)
        os.makedirs(path.parent, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with open(tmp, "wb") as f:
            f.write(content)
        os.replace(tmp, path)
        return key

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise KeyError(key)
        return path.read_bytes()
