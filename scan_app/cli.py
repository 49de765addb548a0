import argparse
from pathlib import Path
from . import __version__

def create_parser():
    parser = argparse.ArgumentParser(
        description=f"Media collection scanner (v{__version__}).",
        formatter_class=argparse.RawTextHelpFormatter
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--config', type=Path, help='Path to TOML config file (overrides default search).')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], default=None, help='Console logging level (overrides config).')
    parser.add_argument('--log-file', type=str, default=None, help='Log file path (overrides config).')
    parser.add_argument('--quiet', '-q', action='store_true', default=False, help='Suppress progress bars and summaries. Errors still shown.')

    subparsers = parser.add_subparsers(dest='command', required=True, help='Action to perform')

    # --- Scan Subparser ---
    parser_scan = subparsers.add_parser('scan', help='Scan collections and update the item store.', formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser_scan.add_argument('--collection', '-c', action='append', default=None, metavar='NAME_OR_ID', help='Only scan this collection (repeatable). Default: all configured collections.')
    parser_scan.add_argument('--only-nfo', action=argparse.BooleanOptionalAction, default=None, help='Only re-read NFO files (overrides config).')
    parser_scan.add_argument('--probe', dest='probe_video', action=argparse.BooleanOptionalAction, default=None, help='Enable/disable video track probing (overrides config).')
    parser_scan.add_argument('--force', action='store_true', default=False, help='Rescan directories even if nothing changed since the last scan.')
    parser_scan.add_argument('--concurrency', dest='max_concurrent_scans', type=int, default=None, metavar='N', help='Directories scanned concurrently (overrides config).')
    parser_scan.add_argument('--item', action='append', default=None, metavar='DIRNAME', help='Only rescan this item directory of the selected collection (repeatable).')

    # --- List Subparser ---
    parser_list = subparsers.add_parser('list', help='List stored items of a collection.')
    parser_list.add_argument('collection', type=str, help='Collection name or id.')
    parser_list.add_argument('--deleted', action='store_true', default=False, help='Include items marked deleted.')

    # --- Config Subparser ---
    parser_config = subparsers.add_parser('config', help='Manage application configuration.')
    config_subparsers = parser_config.add_subparsers(dest='config_command', required=True, help='Configuration action to perform')
    parser_config_show = config_subparsers.add_parser('show', help='Show the currently loaded configuration.')
    parser_config_show.add_argument('--raw', action='store_true', help='Show the raw TOML content of the loaded config file.')
    config_subparsers.add_parser('validate', help='Validate the configuration file against the schema.')
    parser_config_generate = config_subparsers.add_parser('generate', help='Generate a default config.toml file.')
    parser_config_generate.add_argument('--output', type=Path, default=None, help='Where to write the file. Defaults to config.toml in the current directory.')
    parser_config_generate.add_argument('--force', '-f', action='store_true', help='Overwrite the config file if it already exists.')

    return parser

def parse_arguments(argv=None):
    parser = create_parser()
    args = parser.parse_args(argv)
    if getattr(args, 'force', False) and args.command == 'scan':
        args.skip_unchanged = False
    if getattr(args, 'max_concurrent_scans', None) is not None and args.max_concurrent_scans < 1:
        parser.error("--concurrency must be at least 1")
    if getattr(args, 'item', None) and len(args.collection or []) != 1:
        parser.error("--item needs exactly one --collection")
    return args
