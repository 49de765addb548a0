# scan_app/item_store.py
"""
Persistence collaborators for scanned items.

The scanner only needs a load / insert / update cycle per item; how items are
stored is up to the backend. Both backends hand out copies, so a caller can
never mutate stored state by accident.
"""
import asyncio
import copy
import logging
from functools import partial
from pathlib import Path
from typing import Optional, List, Dict, Protocol, Any

import diskcache

from .exceptions import StoreError
from .models import MediaItem, DeletionSet

log = logging.getLogger(__name__)

class ItemStore(Protocol):
    async def load_item(self, collection_id: int, key: str) -> Optional[MediaItem]:
        """Loads an item by its directory name or by its id."""
        ...

    async def list_items(self, collection_id: int) -> List[MediaItem]: ...

    async def insert(self, item: MediaItem) -> str: ...

    async def update(self, item: MediaItem) -> None: ...

    async def record_deletions(self, collection_id: int, item_id: str, deletions: DeletionSet) -> None: ...

    def close(self) -> None: ...


class InMemoryItemStore:
    def __init__(self):
        self._items: Dict[int, Dict[str, MediaItem]] = {}
        self._paths: Dict[int, Dict[str, str]] = {}
        self.deletions: Dict[str, List[DeletionSet]] = {}

    def _lookup(self, collection_id: int, key: str) -> Optional[MediaItem]:
        items = self._items.get(collection_id, {})
        if key in items:
            return items[key]
        item_id = self._paths.get(collection_id, {}).get(key)
        return items.get(item_id) if item_id else None

    async def load_item(self, collection_id: int, key: str) -> Optional[MediaItem]:
        item = self._lookup(collection_id, key)
        return copy.deepcopy(item) if item is not None else None

    async def list_items(self, collection_id: int) -> List[MediaItem]:
        return [copy.deepcopy(i) for i in self._items.get(collection_id, {}).values()]

    def _store(self, item: MediaItem):
        paths = self._paths.setdefault(item.collection_id, {})
        for path, item_id in list(paths.items()):
            if item_id == item.id:
                del paths[path]
        if item.dirname:
            paths[item.dirname] = item.id
        self._items.setdefault(item.collection_id, {})[item.id] = copy.deepcopy(item)

    async def insert(self, item: MediaItem) -> str:
        if not item.id:
            raise StoreError("Cannot insert an item without an id.")
        if item.id in self._items.get(item.collection_id, {}):
            raise StoreError(f"Item {item.id} already exists in collection {item.collection_id}.")
        self._store(item)
        return item.id

    async def update(self, item: MediaItem) -> None:
        if item.id not in self._items.get(item.collection_id, {}):
            raise StoreError(f"Item {item.id} not found in collection {item.collection_id}.")
        self._store(item)

    async def record_deletions(self, collection_id: int, item_id: str, deletions: DeletionSet) -> None:
        if not deletions.is_empty():
            self.deletions.setdefault(item_id, []).append(copy.deepcopy(deletions))

    def close(self) -> None:
        pass


class DiskCacheItemStore:
    """
    Stores pickled items in a diskcache directory.

    Keys: ('item', cid, id) -> item, ('path', cid, dirname) -> id,
    ('index', cid) -> list of ids, ('deleted', cid, id) -> list of DeletionSets.
    """
    def __init__(self, directory: Path):
        self.directory = Path(directory)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self.cache = diskcache.Cache(str(self.directory))
        except OSError as e:
            raise StoreError(f"Failed to open item store at '{self.directory}': {e}") from e
        log.info(f"Item store opened at: {self.directory}")

    async def _run_sync(self, func, *args, **kwargs) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    def _load_sync(self, collection_id: int, key: str) -> Optional[MediaItem]:
        item = self.cache.get(('item', collection_id, key))
        if item is None:
            item_id = self.cache.get(('path', collection_id, key))
            if item_id is not None:
                item = self.cache.get(('item', collection_id, item_id))
        return item

    def _list_sync(self, collection_id: int) -> List[MediaItem]:
        items = []
        for item_id in self.cache.get(('index', collection_id), []):
            item = self.cache.get(('item', collection_id, item_id))
            if item is not None:
                items.append(item)
        return items

    def _store_sync(self, item: MediaItem, must_exist: bool):
        cid = item.collection_id
        with self.cache.transact():
            existing = self.cache.get(('item', cid, item.id))
            if must_exist and existing is None:
                raise StoreError(f"Item {item.id} not found in collection {cid}.")
            if not must_exist and existing is not None:
                raise StoreError(f"Item {item.id} already exists in collection {cid}.")
            if existing is not None and existing.dirname and existing.dirname != item.dirname:
                self.cache.delete(('path', cid, existing.dirname))
            if item.dirname:
                self.cache.set(('path', cid, item.dirname), item.id)
            self.cache.set(('item', cid, item.id), item)
            if existing is None:
                index = self.cache.get(('index', cid), [])
                index.append(item.id)
                self.cache.set(('index', cid), index)

    def _record_deletions_sync(self, collection_id: int, item_id: str, deletions: DeletionSet):
        with self.cache.transact():
            history = self.cache.get(('deleted', collection_id, item_id), [])
            history.append(deletions)
            self.cache.set(('deleted', collection_id, item_id), history)

    async def load_item(self, collection_id: int, key: str) -> Optional[MediaItem]:
        return await self._run_sync(self._load_sync, collection_id, key)

    async def list_items(self, collection_id: int) -> List[MediaItem]:
        return await self._run_sync(self._list_sync, collection_id)

    async def insert(self, item: MediaItem) -> str:
        if not item.id:
            raise StoreError("Cannot insert an item without an id.")
        await self._run_sync(self._store_sync, item, False)
        return item.id

    async def update(self, item: MediaItem) -> None:
        await self._run_sync(self._store_sync, item, True)

    async def record_deletions(self, collection_id: int, item_id: str, deletions: DeletionSet) -> None:
        if deletions.is_empty():
            return
        await self._run_sync(self._record_deletions_sync, collection_id, item_id, deletions)

    def close(self) -> None:
        self.cache.close()
