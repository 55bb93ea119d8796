from __future__ import annotations

from functools import lru_cache
from pathlib import Path

import structlog

from hireflow.core.config import settings
from hireflow.storage.base import StorageAdapter
from hireflow.storage.local import LocalStorageAdapter

logger = structlog.get_logger(__name__)

SUPPORTED_BACKENDS = ("local",)


def create_storage(
    backend: str | None = None,
    root: str | Path | None = None,
    public_base_url: str | None = None,
) -> StorageAdapter:
    selected = (backend or settings.storage_backend).strip().lower()
    if selected not in SUPPORTED_BACKENDS:
        raise ValueError(
            f"unsupported storage backend: {selected} (expected one of {', '.join(SUPPORTED_BACKENDS)})"
        )

    adapter = LocalStorageAdapter(
        Path(root or settings.storage_root),
        settings.storage_public_base_url if public_base_url is None else public_base_url,
    )
    logger.info("storage_configured", backend=selected, root=str(adapter.root))
    return adapter


@lru_cache(maxsize=1)
def get_storage() -> StorageAdapter:
    return create_storage()
