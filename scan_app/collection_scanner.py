# scan_app/collection_scanner.py

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Tuple, Iterable

from rich.console import Console
from rich.progress import Progress, TextColumn, BarColumn, MofNCompleteColumn, TimeElapsedColumn
from rich.table import Table

from .enums import ScanOutcome
from .exceptions import ScannerError, FileAccessError
from .item_store import ItemStore
from .models import Collection, MediaItem
from .reconciler import ReconciliationEngine, descend_filter
from .video_probe import VideoProbe
from .walker import list_item_directories, item_directory, ItemDirectory

log = logging.getLogger(__name__)

DEFAULT_PROGRESS_COLUMNS = (
    TextColumn("[progress.description]{task.description}"),
    BarColumn(),
    MofNCompleteColumn(),
    TimeElapsedColumn(),
    TextColumn("[cyan]{task.fields[item_name]}"),
)

@dataclass
class CollectionScanSummary:
    collection: Collection
    outcomes: Dict[str, ScanOutcome] = field(default_factory=dict) # dirname -> outcome

    def counts(self) -> Counter:
        return Counter(self.outcomes.values())


class CollectionScanner:
    def __init__(self, store: ItemStore, probe: Optional[VideoProbe] = None, max_concurrent_scans: int = 4,
                 only_nfo: bool = False, skip_unchanged: bool = True, console: Optional[Console] = None,
                 quiet: bool = False):
        self.store = store
        self.engine = ReconciliationEngine(probe)
        self.max_concurrent_scans = max(1, max_concurrent_scans)
        self.only_nfo = only_nfo
        self.skip_unchanged = skip_unchanged
        self.console = console or Console(stderr=True, quiet=quiet)
        self.quiet = quiet

    def _is_unchanged(self, previous: Optional[MediaItem], item_dir: ItemDirectory) -> bool:
        return (
            self.skip_unchanged
            and previous is not None
            and not previous.deleted
            and previous.dirname == item_dir.name
            and previous.last_modified >= item_dir.newest
        )

    async def scan_item(self, collection: Collection, item_dir: ItemDirectory, previous: Optional[MediaItem]) -> ScanOutcome:
        """Rescans one directory and saves the result. Errors are logged and reported as FAILED."""
        name = item_dir.name
        try:
            if self._is_unchanged(previous, item_dir):
                log.debug(f"[{ScanOutcome.UNCHANGED}] '{name}': nothing newer than last scan.")
                return ScanOutcome.UNCHANGED

            result = await self.engine.reconcile(collection, name, previous, only_nfo=self.only_nfo)
            if result.item is None:
                if previous is not None and not previous.deleted:
                    previous.deleted = True
                    await self.store.update(previous)
                    collection.items[previous.id] = previous
                    log.info(f"[{ScanOutcome.DELETED}] '{name}' no longer holds a valid {previous.item_type}.")
                    return ScanOutcome.DELETED
                log.debug(f"[{ScanOutcome.SKIPPED}] '{name}' is not a media item.")
                return ScanOutcome.SKIPPED

            item = result.item
            if previous is None:
                await self.store.insert(item)
                outcome = ScanOutcome.CREATED
            else:
                await self.store.update(item)
                outcome = ScanOutcome.UPDATED
            await self.store.record_deletions(collection.collection_id, item.id, result.deletions)
            collection.items[item.id] = item
            log.info(f"[{outcome}] {item.item_type} '{item.title}' ({name})")
            return outcome
        except ScannerError as e:
            log.error(f"[{ScanOutcome.FAILED}] '{name}': {e}")
            return ScanOutcome.FAILED
        except Exception as e:
            log.exception(f"[{ScanOutcome.FAILED}] Unexpected error scanning '{name}': {e}")
            return ScanOutcome.FAILED

    async def scan_directory(self, collection: Collection, dirname: str) -> ScanOutcome:
        """
        Rescans one item directory, loading its stored item by directory name.
        A stored item whose directory can no longer be read is marked deleted.
        """
        previous = await self.store.load_item(collection.collection_id, dirname)
        try:
            item_dir = await item_directory(collection.directory, dirname, descend=descend_filter(collection))
        except FileAccessError as e:
            if previous is None or previous.deleted:
                log.warning(f"[{ScanOutcome.SKIPPED}] {e}")
                return ScanOutcome.SKIPPED
            previous.deleted = True
            await self.store.update(previous)
            collection.items[previous.id] = previous
            log.info(f"[{ScanOutcome.DELETED}] '{dirname}' has disappeared.")
            return ScanOutcome.DELETED
        return await self.scan_item(collection, item_dir, previous)

    def _match_previous(self, item_dirs: List[ItemDirectory], stored: List[MediaItem]) -> List[Tuple[ItemDirectory, Optional[MediaItem]]]:
        """
        Pairs each directory with its stored item: by path first, then by
        directory inode for stored items whose path has vanished (a rename).
        """
        present = {d.name for d in item_dirs}
        by_path = {i.dirname: i for i in stored if i.dirname}
        by_inode: Dict[int, MediaItem] = {}
        for item in stored:
            if item.directory is not None and item.dirname not in present:
                by_inode.setdefault(item.directory.inode, item)

        claimed = set()
        pairs = []
        for d in item_dirs:
            previous = by_path.get(d.name)
            if previous is None:
                candidate = by_inode.get(d.inode)
                if candidate is not None and candidate.id not in claimed:
                    log.debug(f"'{d.name}' has the inode of vanished '{candidate.dirname}', treating as rename.")
                    previous = candidate
            if previous is not None:
                claimed.add(previous.id)
            pairs.append((d, previous))
        return pairs

    async def scan_collection(self, collection: Collection) -> CollectionScanSummary:
        summary = CollectionScanSummary(collection)
        log.info(f"Scanning collection '{collection.name}' ({collection.type}) at {collection.directory}")
        try:
            item_dirs = await list_item_directories(collection.directory, descend=descend_filter(collection))
        except ScannerError as e:
            log.error(f"Cannot read collection directory '{collection.directory}': {e}")
            return summary

        stored = await self.store.list_items(collection.collection_id)
        pairs = self._match_previous(item_dirs, stored)
        semaphore = asyncio.Semaphore(self.max_concurrent_scans)

        with Progress(*DEFAULT_PROGRESS_COLUMNS, console=self.console, disable=self.quiet) as progress:
            task_id = progress.add_task(f"Scanning {collection.name}", total=len(pairs), item_name="")

            async def run(item_dir: ItemDirectory, previous: Optional[MediaItem]) -> Tuple[str, ScanOutcome]:
                async with semaphore:
                    outcome = await self.scan_item(collection, item_dir, previous)
                progress.update(task_id, advance=1, item_name=item_dir.name[:40])
                return item_dir.name, outcome

            results = await asyncio.gather(*(run(d, prev) for d, prev in pairs))
        summary.outcomes.update(results)

        claimed = {prev.id for _, prev in pairs if prev is not None}
        present = {d.name for d in item_dirs}
        for item in stored:
            if item.id in claimed or item.deleted or item.dirname in present:
                continue
            item.deleted = True
            await self.store.update(item)
            collection.items[item.id] = item
            summary.outcomes[item.dirname or item.id] = ScanOutcome.DELETED
            log.info(f"[{ScanOutcome.DELETED}] '{item.dirname}' has disappeared.")

        counts = summary.counts()
        log.info(f"Collection '{collection.name}': " + ", ".join(f"{o}={counts.get(o, 0)}" for o in ScanOutcome))
        return summary


def summary_table(summaries: Iterable[CollectionScanSummary]) -> Table:
    table = Table(title="Scan Summary")
    table.add_column("Collection", style="cyan")
    for outcome in ScanOutcome:
        table.add_column(str(outcome), justify="right")
    for s in summaries:
        counts = s.counts()
        table.add_row(s.collection.name, *(str(counts.get(o, 0)) for o in ScanOutcome))
    return table
