"""Persistence adapters: document containers and attachment blobs."""

from .blobs import BlobStore, BlobStoreError, FileSystemBlobStore, InMemoryBlobStore
from .containers import (
    ContainerError,
    DocumentContainer,
    InMemoryDocumentContainer,
    ItemConflict,
    ItemNotFound,
    PreconditionFailed,
    SqlDocumentContainer,
)

__all__ = [
    "BlobStore",
    "BlobStoreError",
    "ContainerError",
    "DocumentContainer",
    "FileSystemBlobStore",
    "InMemoryBlobStore",
    "InMemoryDocumentContainer",
    "ItemConflict",
    "ItemNotFound",
    "PreconditionFailed",
    "SqlDocumentContainer",
]
