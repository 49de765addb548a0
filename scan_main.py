#!/usr/bin/env python3
import sys
import logging
import asyncio
from pathlib import Path
from typing import List, Optional

import pytomlpp
from rich.console import Console
from rich.table import Table

from scan_app.cli import parse_arguments
from scan_app.config_manager import (
    ConfigManager, ConfigHelper, generate_default_toml_content, DEFAULT_CONFIG_FILENAME,
)
from scan_app.collection_scanner import CollectionScanner, CollectionScanSummary, summary_table
from scan_app.enums import ScanOutcome
from scan_app.exceptions import ScannerError, ConfigError
from scan_app.item_store import ItemStore, DiskCacheItemStore, InMemoryItemStore
from scan_app.log_setup import setup_logging, level_from_name
from scan_app.models import Collection, TVShow, Movie
from scan_app.video_probe import MediaInfoProbe, NullProbe

log = logging.getLogger("scan_app")


def select_collections(collections: List[Collection], selectors: Optional[List[str]]) -> List[Collection]:
    """Picks collections by name (case-insensitive) or numeric id. No selectors selects all."""
    if not selectors:
        return collections
    selected = []
    for sel in selectors:
        match = next(
            (c for c in collections if c.name.lower() == sel.lower() or str(c.collection_id) == sel),
            None,
        )
        if match is None:
            raise ConfigError(f"No collection named or numbered '{sel}' in the configuration.")
        if match not in selected:
            selected.append(match)
    return selected


def open_store(manager: ConfigManager) -> ItemStore:
    if manager.model.store.backend == 'memory':
        log.warning("Using the in-memory item store: scan results are not kept after exit.")
        return InMemoryItemStore()
    return DiskCacheItemStore(manager.store_directory())


async def run_scan(args, manager: ConfigManager, console: Console) -> int:
    cfg = ConfigHelper(manager, args)
    collections = select_collections(manager.get_collections(), args.collection)
    if not collections:
        log.warning(f"[{ScanOutcome.SKIPPED}] No collections configured. Add [[collections]] tables to {manager.config_path}.")
        return 1

    probe = MediaInfoProbe() if cfg('probe_video') else NullProbe()
    store = open_store(manager)
    try:
        scanner = CollectionScanner(
            store,
            probe=probe,
            max_concurrent_scans=int(cfg('max_concurrent_scans')),
            only_nfo=bool(cfg('only_nfo')),
            skip_unchanged=bool(cfg('skip_unchanged')),
            console=console,
            quiet=args.quiet,
        )
        summaries = []
        for collection in collections:
            if args.item:
                summary = CollectionScanSummary(collection)
                for dirname in args.item:
                    summary.outcomes[dirname] = await scanner.scan_directory(collection, dirname)
                summaries.append(summary)
            else:
                summaries.append(await scanner.scan_collection(collection))
    finally:
        store.close()

    if not args.quiet:
        console.print(summary_table(summaries))
    failed = sum(s.counts().get(ScanOutcome.FAILED, 0) for s in summaries)
    return 1 if failed else 0


async def run_list(args, manager: ConfigManager, console: Console) -> int:
    collection = select_collections(manager.get_collections(), [args.collection])[0]
    store = open_store(manager)
    try:
        items = await store.list_items(collection.collection_id)
    finally:
        store.close()

    table = Table(title=f"{collection.name} ({collection.type})")
    table.add_column("Title", style="cyan")
    table.add_column("Directory")
    table.add_column("Added")
    table.add_column("Details", justify="right")
    table.add_column("Deleted")
    for item in sorted(items, key=lambda i: (i.title or "").lower()):
        if item.deleted and not args.deleted:
            continue
        if isinstance(item, TVShow):
            details = f"{len(item.seasons)} seasons, {len(item.all_episodes())} episodes"
        elif isinstance(item, Movie):
            details = str(item.year or "")
        else:
            details = ""
        table.add_row(item.title, item.dirname or "", item.date_added or "", details, "yes" if item.deleted else "")
    console.print(table)
    return 0


def run_config(args, console: Console) -> int:
    if args.config_command == 'generate':
        target_path = (args.output or Path.cwd() / DEFAULT_CONFIG_FILENAME).resolve()
        if target_path.exists() and not args.force:
            console.print(f"[yellow]Config file {target_path} exists. Use --force to overwrite.[/yellow]")
            return 1
        target_path.parent.mkdir(parents=True, exist_ok=True)
        target_path.write_text(generate_default_toml_content(), encoding='utf-8')
        console.print(f"[green]✓ Default configuration file written to: {target_path}[/green]")
        log.info(f"Default configuration file created at {target_path}")
        return 0

    manager = ConfigManager(getattr(args, 'config', None))
    if args.config_command == 'validate':
        console.print(f"[green]✓ Configuration '{manager.config_path}' is valid ({len(manager.model.collections)} collections).[/green]")
        return 0
    if args.raw:
        console.print(manager.get_raw_toml_content() or "", markup=False)
    else:
        console.print(pytomlpp.dumps(manager.as_dict()), markup=False)
    return 0


async def main_async(argv=None) -> int:
    args = parse_arguments(argv)
    console = Console(stderr=False, quiet=args.quiet)

    # Log to the console first; config may raise the level or add a log file.
    setup_logging(log_level_console=level_from_name(args.log_level))
    try:
        if args.command == 'config':
            return run_config(args, console)

        manager = ConfigManager(args.config)
        log_level = level_from_name(args.log_level or manager.get_value('log_level'))
        setup_logging(log_level_console=log_level, log_file=args.log_file or manager.log_file_path())

        if args.command == 'scan':
            return await run_scan(args, manager, console)
        if args.command == 'list':
            return await run_list(args, manager, console)
        log.error(f"Unknown command: {args.command}")
        return 2
    except ConfigError as e:
        log.critical(f"Configuration error: {e}")
        return 1
    except ScannerError as e:
        log.critical(f"{e}")
        return 1
    except KeyboardInterrupt:
        log.warning("Interrupted by user.")
        return 130


def main():
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
