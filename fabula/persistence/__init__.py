"""Persistence - save slots and the stores that hold them."""

from .store import SaveSlot, SaveStore, MemorySaveStore, FileSaveStore, MAX_SAVE_SLOTS

__all__ = [
    "SaveSlot",
    "SaveStore",
    "MemorySaveStore",
    "FileSaveStore",
    "MAX_SAVE_SLOTS",
]
