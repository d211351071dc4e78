#!/usr/bin/env python3
"""
rename_ts.py - Rename recorded TS files from broadcast and guide metadata

Accepts files and directories. Directories are expanded one level; only
.ts / .m2ts files are processed, strictly one after another.

Safety:
- --dry-run runs the whole pipeline and only reports the destination
- Without an error template, a failed file is left untouched
- Exit code is 1 when any input failed
"""

import sys
import logging
import argparse
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from tsrename.config import RunConfig, DuplicateMode, load_config
from tsrename.constants import ACCEPTED_EXTENSIONS
from tsrename.errors import RenameError
from tsrename.renamer import TsRenamer

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path('config.yaml')

# Per-file outcome lines for --log-file
outcome_logger = logging.getLogger('rename_ts.outcome')


def accepted(path: Path) -> bool:
    return path.suffix.lower() in ACCEPTED_EXTENSIONS


def collect_inputs(args: List[Path]) -> Iterator[Path]:
    """Expand CLI arguments into recording files; missing paths are reported"""
    for arg in args:
        if not arg.exists():
            logger.error(f"File or Directory does not exist: {arg}")
            log_outcome('error', arg, "File or Directory does not exist")
            continue

        if arg.is_file():
            if accepted(arg):
                yield arg
            else:
                logger.debug(f"Skipping (not a TS file): {arg}")
            continue

        for child in sorted(arg.iterdir()):
            if child.is_file() and accepted(child):
                yield child


def log_outcome(kind: str, path: Path, message: str):
    outcome_logger.info(f'[{kind}] "{path}", {message}')


def setup_logging(verbose: bool, log_file: Optional[Path]):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    outcome_logger.propagate = False
    if log_file is not None:
        handler = logging.FileHandler(log_file, encoding='utf-8')
        handler.setFormatter(logging.Formatter('%(message)s'))
        outcome_logger.addHandler(handler)
        outcome_logger.setLevel(logging.INFO)


def apply_cli_overrides(config: RunConfig, args) -> RunConfig:
    """CLI flags take precedence over configuration file values"""
    changes = {}
    for key in ('parent', 'dir', 'file', 'error_dir', 'error_file', 'packet_size'):
        value = getattr(args, key)
        if value is not None:
            changes[key] = value
    for key in ('check_service', 'check_time', 'check_drop', 'dry_run'):
        if getattr(args, key):
            changes[key] = True
    if args.check_duplication:
        changes['duplicate_mode'] = DuplicateMode.STRICT
    return replace(config, **changes) if changes else config


def process(files: List[Path], config: RunConfig) -> Dict[str, int]:
    stats = {
        'total': 0,
        'renamed': 0,
        'error_path': 0,
        'failed': 0,
    }

    for path in files:
        stats['total'] += 1
        logger.info(f"[ {path} ]")
        try:
            result = TsRenamer(path, config).execute()
        except (RenameError, OSError) as e:
            stats['failed'] += 1
            logger.error(f"Error: {e}")
            log_outcome('error', path, str(e))
            continue

        if result.ok:
            stats['renamed'] += 1
            log_outcome('info', path, "File is renamed")
        else:
            stats['error_path'] += 1
            log_outcome('error', path, f"{result.error.category.value}: {result.error}")
        logger.info("Dry run complete" if result.dry_run else "File is renamed")

    return stats


def print_stats(stats: Dict[str, int], dry_run: bool):
    """Print summary statistics"""
    print("\n" + "=" * 60)
    if dry_run:
        print("DRY RUN SUMMARY (no files were moved)")
    else:
        print("RENAME SUMMARY")
    print("=" * 60)
    print(f"  Total inputs:        {stats['total']:5d}")
    print(f"  {'Would rename' if dry_run else 'Renamed'}:        {stats['renamed']:5d}")
    print(f"  Sent to error path:  {stats['error_path']:5d}")
    print(f"  Failed:              {stats['failed']:5d}")
    print("=" * 60)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Rename recorded TS files using broadcast and Syoboi Calendar metadata',
        epilog="""
Macros: ${title} ${subTitle} ${count2} ${YYYY} ${MM} ${channelName} ...
Optional blocks: ([ 第${count2}話]) disappears when ${count2} is empty.

Examples:
  python rename_ts.py recording.ts
  python rename_ts.py /path/to/recordings --dry-run
  python rename_ts.py rec.m2ts -d '${title}' -f '${title} #${count2}' --check-time
        """
    )
    parser.add_argument('inputs', type=Path, nargs='+',
                       help='TS files or directories containing them')
    parser.add_argument('--config', type=Path, default=None,
                       help=f'Configuration file (default: {DEFAULT_CONFIG} if present)')
    parser.add_argument('--parent', '-p', default=None,
                       help='Output parent directory (default: input directory)')
    parser.add_argument('--dir', '-d', default=None,
                       help='Directory template')
    parser.add_argument('--file', '-f', default=None,
                       help='File name template (without extension)')
    parser.add_argument('--error-dir', default=None,
                       help='Directory template used when a file fails')
    parser.add_argument('--error-file', default=None,
                       help='File name template used when a file fails')
    parser.add_argument('--packet-size', type=int, choices=(188, 192, 204), default=None,
                       help='TS packet size (default: 188)')
    parser.add_argument('--check-service', action='store_true',
                       help='Fail when the broadcast service is not in the services table')
    parser.add_argument('--check-time', action='store_true',
                       help='Verify recorded start time and duration against the guide')
    parser.add_argument('--check-drop', action='store_true',
                       help='Fail when a packet drop is detected')
    parser.add_argument('--check-duplication', action='store_true',
                       help='Fail instead of adding a random suffix when the target exists')
    parser.add_argument('--dry-run', action='store_true',
                       help='Show the destination without moving anything')
    parser.add_argument('--log-file', type=Path, default=None,
                       help='Append one outcome line per input file')
    parser.add_argument('--verbose', '-v', action='store_true',
                       help='Debug logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    config_path = args.config
    if config_path is None and DEFAULT_CONFIG.exists():
        config_path = DEFAULT_CONFIG
    if config_path is not None and not config_path.exists():
        logger.error(f"Config file not found: {config_path}")
        return 1

    try:
        config = apply_cli_overrides(load_config(config_path), args)
    except (ValueError, KeyError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    missing = [arg for arg in args.inputs if not arg.exists()]
    files = list(collect_inputs(args.inputs))
    if not files:
        logger.warning("No .ts / .m2ts files to process")

    stats = process(files, config)
    print_stats(stats, config.dry_run)

    return 0 if stats['failed'] == 0 and not missing else 1


if __name__ == '__main__':
    sys.exit(main())
