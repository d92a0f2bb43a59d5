"""Error taxonomy shared by the storage, store and bulk layers."""

from __future__ import annotations


class LinkVaultError(Exception):
    """Base class for every user-facing failure."""


class ValidationError(LinkVaultError, ValueError):
    """Input rejected before anything was written."""


class FolderDepthError(ValidationError):
    """A sub-folder was requested under something that is not a root folder."""


class FolderLimitError(ValidationError):
    """The parent folder already holds the maximum number of sub-folders."""


class QuotaExceededError(LinkVaultError):
    """A durable write would exceed the origin's byte quota."""

    def __init__(self, key: str, needed: int, quota: int):
        super().__init__(f"storage quota exceeded writing {key!r}: {needed} bytes > {quota} bytes")
        self.key = key
        self.needed = needed
        self.quota = quota


class ImportRejectedError(LinkVaultError):
    """A backup snapshot failed validation or could not be committed."""


class StorageError(LinkVaultError):
    """The origin storage could not complete a write (locked, read-only, corrupt)."""
