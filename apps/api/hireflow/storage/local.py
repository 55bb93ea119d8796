from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path, PurePosixPath
from typing import BinaryIO

import structlog

from hireflow.storage.base import StorageAdapter

logger = structlog.get_logger(__name__)

COPY_CHUNK_BYTES = 1024 * 1024
TEMP_PREFIX = ".upload-"


class LocalStorageAdapter(StorageAdapter):
    """Filesystem backend rooted at one directory.

    Writes land in a temp file beside the target and are renamed into place,
    so a parse worker never reads a half-written resume.
    """

    def __init__(self, root: Path, public_base_url: str = "") -> None:
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._public_base_url = public_base_url.rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    def _checked_key(self, key: str) -> PurePosixPath:
        cleaned = key.strip().lstrip("/")
        path_key = PurePosixPath(cleaned)
        if not cleaned or ".." in path_key.parts or path_key.name.startswith(TEMP_PREFIX):
            raise ValueError(f"invalid storage key: {key!r}")
        return path_key

    def _path_for_key(self, key: str) -> Path:
        return self._root.joinpath(*self._checked_key(key).parts)

    def put_file(self, key: str, fileobj: BinaryIO) -> str:
        path = self._path_for_key(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as out:
                shutil.copyfileobj(fileobj, out, COPY_CHUNK_BYTES)
                out.flush()
                os.fsync(out.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("storage_object_written", key=key, bytes=path.stat().st_size)
        return self.resolve_uri(key)

    def get_bytes(self, key: str) -> bytes:
        return self._path_for_key(key).read_bytes()

    def delete(self, key: str) -> None:
        self._path_for_key(key).unlink(missing_ok=True)

    def exists(self, key: str) -> bool:
        return self._path_for_key(key).is_file()

    def resolve_uri(self, key: str) -> str:
        return f"local://{self._checked_key(key)}"

    def url_for(self, key: str) -> str:
        path_key = self._checked_key(key)
        if not self._public_base_url:
            return f"local://{path_key}"
        return f"{self._public_base_url}/{path_key}"
