"""File storage for uploaded images, kept outside the relational store."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)


class FileStorage(ABC):
    @abstractmethod
    def upload(self, path: str, content: bytes) -> None: ...

    @abstractmethod
    def download(self, path: str) -> bytes:
        """Return the stored bytes; raise ``FileNotFoundError`` if absent."""

    @abstractmethod
    def delete(self, path: str) -> None: ...


class LocalFileStorage(FileStorage):
    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        target = (self._root / path.lstrip("/")).resolve()
        if self._root not in target.parents:
            raise ValueError(f"Path escapes storage root: {path}")
        return target

    def upload(self, path: str, content: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    def download(self, path: str) -> bytes:
        return self._resolve(path).read_bytes()

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink()
        except FileNotFoundError:
            logger.debug("Nothing to delete at %s", target)
