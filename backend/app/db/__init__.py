"""Database models for the journal document store."""

from .models import Base, DocumentItem, SettingEntry

__all__ = [
    "Base",
    "DocumentItem",
    "SettingEntry",
]
