from __future__ import annotations

import io
from abc import ABC, abstractmethod
from typing import BinaryIO


class StorageAdapter(ABC):
    @abstractmethod
    def put_file(self, key: str, fileobj: BinaryIO) -> str:
        """Store content from file-like object under key and return a URI."""

    def put_bytes(self, key: str, data: bytes) -> str:
        return self.put_file(key, io.BytesIO(data))

    @abstractmethod
    def get_bytes(self, key: str) -> bytes:
        """Return the full content stored under key. Raises FileNotFoundError."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete key if it exists."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Return whether key exists."""

    @abstractmethod
    def resolve_uri(self, key: str) -> str:
        """Return canonical storage URI for a key."""

    @abstractmethod
    def url_for(self, key: str) -> str:
        """Return a URL clients can use to fetch the object."""
