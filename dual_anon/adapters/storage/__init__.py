"""Storage adapters for Stage-1 output."""

from dual_anon.adapters.storage.file_storage import FileStorageAdapter

__all__ = ["FileStorageAdapter"]
