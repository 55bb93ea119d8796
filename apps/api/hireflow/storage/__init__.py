from hireflow.storage.base import StorageAdapter
from hireflow.storage.factory import create_storage, get_storage
from hireflow.storage.local import LocalStorageAdapter

__all__ = ["StorageAdapter", "LocalStorageAdapter", "create_storage", "get_storage"]
