#!/usr/bin/env python3
"""
Filesystem operations for placing a renamed recording

- Same-filesystem: os.rename() (instant)
- Cross-filesystem (EXDEV): shutil.copy2() + verify size + delete source
- Directory creation is idempotent
- Disambiguation appends _<random hex> to the stem of a taken name

Filesystem errors propagate unchanged; they are never domain failures.
"""

import errno
import logging
import os
import secrets
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

# Hex characters appended by disambiguate()
SUFFIX_BYTES = 4


def make_directories(directory: Path) -> None:
    directory.mkdir(parents=True, exist_ok=True)


def disambiguate(path: Path) -> Path:
    """
    Return `path` if it is free, else the first free `<stem>_<random hex><suffix>`

    Each call draws fresh suffixes, so two calls for the same taken path
    give different results.
    """
    candidate = path
    while candidate.exists():
        candidate = path.with_name(f"{path.stem}_{secrets.token_hex(SUFFIX_BYTES)}{path.suffix}")
    return candidate


def _copy_verify_delete(source: Path, dest: Path) -> None:
    shutil.copy2(str(source), str(dest))

    # Verify: destination exists and size matches
    if dest.exists() and dest.stat().st_size == source.stat().st_size:
        source.unlink()
        return

    logger.error(f"Verification failed: {dest} (size mismatch or missing)")
    if dest.exists():
        dest.unlink()  # Clean up failed copy
    raise OSError(errno.EIO, "Copy verification failed", str(dest))


def move_file(source: Path, dest: Path) -> None:
    """
    Move a single file from source to dest

    Tries os.rename first; a cross-device error falls back to copy, size
    verification and deletion of the source. Any other OSError propagates.
    """
    try:
        os.rename(source, dest)
        logger.debug(f"Renamed {source} -> {dest}")
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
        logger.info(" - Cross-filesystem move: copying...")
        _copy_verify_delete(source, dest)
