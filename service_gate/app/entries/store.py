"""
Entry store contract and in-memory implementation.
"""

import asyncio
import copy
import json
import weakref
from pathlib import Path
from typing import AsyncContextManager, Dict, Iterable, List, Optional, Protocol, Union

from shared.errors import StoreError
from shared.logging import get_logger
from .models import Entry


class EntryStore(Protocol):
    """Storage used by the access gate.

    get() returns a private copy; commit() atomically replaces the stored
    entry. lock() serializes read-modify-commit sequences per entry name.
    """

    async def get(self, name: str) -> Optional[Entry]:
        ...

    async def commit(self, entry: Entry) -> None:
        ...

    def lock(self, name: str) -> AsyncContextManager:
        ...


class InMemoryEntryStore:
    """Process-local entry store."""

    def __init__(self, entries: Iterable[Entry] = ()):
        self.logger = get_logger("gate.entries.memory")
        self._entries: Dict[str, Entry] = {}
        # Locks live only while some request holds or waits on them
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        for entry in entries:
            self.put(entry)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InMemoryEntryStore":
        """Load entries from a JSON file holding a list of entry objects."""
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StoreError(f"Could not load entries file: {e}", {"path": str(path)})

        if not isinstance(data, list):
            raise StoreError("Entries file must hold a list of entries", {"path": str(path)})

        store = cls()
        for item in data:
            try:
                entry = Entry.from_dict(item)
            except (KeyError, TypeError, ValueError) as e:
                raise StoreError(f"Invalid entry in entries file: {e}", {"path": str(path)})
            error = entry.access_blacklist.first_error()
            if error is not None:
                store.logger.warning("Entry rule did not parse", entry=entry.name, error=error.comment)
            store.put(entry)
        store.logger.info("Entries loaded", path=str(path), count=len(store))
        return store

    def __len__(self) -> int:
        return len(self._entries)

    def names(self) -> List[str]:
        return sorted(self._entries)

    def put(self, entry: Entry):
        self._entries[entry.name] = copy.deepcopy(entry)

    def delete(self, name: str) -> bool:
        return self._entries.pop(name, None) is not None

    async def get(self, name: str) -> Optional[Entry]:
        entry = self._entries.get(name)
        return copy.deepcopy(entry) if entry is not None else None

    async def commit(self, entry: Entry) -> None:
        self._entries[entry.name] = copy.deepcopy(entry)

    def lock(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[name] = lock
        return lock
