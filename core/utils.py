"""Shared utility functions for the farm core modules.

Provides corruption-safe JSON read/write helpers with backup rotation and
atomic write semantics, plus the formatting helpers used to keep wallet
addresses and proxy credentials out of the logs.
"""

import json
import logging
import os
from typing import Any, Optional

logger = logging.getLogger(__name__)


def safe_json_read(filepath: str, max_backups: int = 3) -> Optional[Any]:
    """Read JSON with fallback to backups if corrupted.

    Tries the primary file first, then ``file.backup.1`` ..
    ``file.backup.N`` in order until one parses.

    Args:
        filepath: Path to the primary JSON file.
        max_backups: Maximum number of backup files to check.

    Returns:
        The parsed document (list or dict), or ``None`` if every
        candidate is missing or corrupted.
    """
    paths = [filepath] + [
        f"{filepath}.backup.{i}"
        for i in range(1, max_backups + 1)
    ]
    for path in paths:
        if not os.path.exists(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable state file %s: %s", path, exc)
            continue
        if path != filepath:
            logger.warning("Recovered %s from backup %s", filepath, path)
        return data
    return None


def safe_json_write(filepath: str, data: Any, max_backups: int = 3) -> bool:
    """Atomic JSON write with corruption protection and backups.

    The write sequence is:
        1. Serialise *data* to ``<file>.tmp`` and re-read it.
        2. Rotate existing backups (``backup.2`` -> ``backup.3``, ...).
        3. Copy the current file to ``backup.1``.
        4. Atomically replace the target with the temporary file.

    The current file is never touched until the new content has been
    validated, so a crash mid-write leaves the previous checkpoint intact.

    Args:
        filepath: Destination path for the JSON file.
        data: JSON-serialisable document.
        max_backups: Number of backup generations to keep (``0``
            disables backups).

    Returns:
        ``True`` when the new content was committed.
    """
    temp_file = filepath + ".tmp"
    try:
        dirpath = os.path.dirname(filepath)
        if dirpath:
            os.makedirs(dirpath, exist_ok=True)

        with open(temp_file, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, ensure_ascii=False)
            fh.flush()
            os.fsync(fh.fileno())

        # Validate by re-reading before committing
        with open(temp_file, "r", encoding="utf-8") as fh:
            json.load(fh)

        if max_backups > 0 and os.path.exists(filepath):
            backup_base = filepath + ".backup"
            for i in range(max_backups - 1, 0, -1):
                old = f"{backup_base}.{i}"
                new = f"{backup_base}.{i + 1}"
                if os.path.exists(old):
                    os.replace(old, new)
            with open(filepath, "rb") as src, \
                    open(f"{backup_base}.1", "wb") as dst:
                dst.write(src.read())

        os.replace(temp_file, filepath)
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.error(
            "Could not safely write JSON to %s: %s",
            filepath, e,
        )
        if os.path.exists(temp_file):
            try:
                os.remove(temp_file)
            except OSError:
                pass
        return False


def short_address(address: Optional[str], length: int = 8) -> str:
    """Truncate a wallet address for log output (``AbCdEfGh...``)."""
    if not address:
        return "<unknown>"
    if len(address) <= length:
        return address
    return f"{address[:length]}..."
