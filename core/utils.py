"""Shared helpers for the Rewardbot core modules.

Corruption-safe JSON persistence (used by the registration roster) and the
account identifier format check shared by the roster and the scheduler.
"""

import json
import logging
import os
import re
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

MAX_ACCOUNT_ID_DIGITS = 15
_NON_DIGITS = re.compile(r"\D")


def normalize_account_id(raw: Any) -> str:
    """Strip everything except digits from *raw*."""
    return _NON_DIGITS.sub("", str(raw or ""))


def is_valid_account_id(raw: Any) -> bool:
    """Return True when *raw* carries 1 to 15 digits once non-digits are
    stripped.

    ``"1234-5678"`` is accepted (normalizes to ``"12345678"``); ``"abc"``
    and a 16-digit id are rejected.
    """
    digits = normalize_account_id(raw)
    return 0 < len(digits) <= MAX_ACCOUNT_ID_DIGITS


def safe_json_read(
    filepath: str, max_backups: int = 3,
) -> Optional[Dict[str, Any]]:
    """Read a JSON document, falling back to backups if it is corrupted.

    The primary file is tried first, then ``<file>.backup.1`` up to
    ``<file>.backup.<max_backups>``.

    Args:
        filepath: Path to the primary JSON file.
        max_backups: Number of backup generations to consult.

    Returns:
        The parsed document, or ``None`` if every candidate is missing or
        unreadable.
    """
    candidates = [filepath] + [
        f"{filepath}.backup.{i}" for i in range(1, max_backups + 1)
    ]
    for index, path in enumerate(candidates):
        if not os.path.exists(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable JSON at %s: %s", path, exc)
            continue
        if index:
            logger.warning("Recovered %s from backup %s", filepath, path)
        return data
    return None


def safe_json_write(
    filepath: str,
    data: Dict[str, Any],
    max_backups: int = 3,
) -> bool:
    """Write *data* as JSON atomically, keeping rotated backups.

    Sequence: shift ``backup.N`` generations up by one, move the current
    file to ``backup.1``, write a temp file, re-read it to validate, then
    ``os.replace`` it onto the target.

    Args:
        filepath: Destination path.
        data: JSON-serialisable dictionary.
        max_backups: Backup generations to keep.

    Returns:
        True on success, False if the write failed (the failure is logged).
    """
    temp_file = filepath + ".tmp"
    try:
        dirpath = os.path.dirname(filepath)
        if dirpath:
            os.makedirs(dirpath, exist_ok=True)

        if os.path.exists(filepath):
            backup_base = filepath + ".backup"
            for i in range(max_backups - 1, 0, -1):
                older = f"{backup_base}.{i}"
                if os.path.exists(older):
                    os.replace(older, f"{backup_base}.{i + 1}")
            os.replace(filepath, f"{backup_base}.1")

        with open(temp_file, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, default=str)

        with open(temp_file, "r", encoding="utf-8") as fh:
            json.load(fh)

        os.replace(temp_file, filepath)
        return True
    except (OSError, TypeError, ValueError) as exc:
        logger.error("Could not safely write JSON to %s: %s", filepath, exc)
        return False
