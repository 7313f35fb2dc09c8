"""Logging configuration for Rewardbot.

Two handlers are attached to the root logger:

1. **Console** -- :class:`SafeStreamHandler`, which degrades emoji and other
   non-encodable characters instead of raising when the terminal code page
   is narrow.
2. **File** -- :class:`CompressedRotatingFileHandler` writing
   ``logs/rewardbot.log`` and gzip-compressing each rotated generation
   (10 MiB per file, 5 backups).

Claim sessions additionally emit structured ``[LIFECYCLE]`` lines built by
:func:`lifecycle_message` so runs can be grepped per account.

Usage::

    from core.logging_setup import setup_logging
    setup_logging("DEBUG")
"""

import gzip
import logging
import os
import shutil
import sys
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
DEFAULT_LOG_FILE = os.path.join("logs", "rewardbot.log")
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("asyncio", "aiohttp", "urllib3", "camoufox")


class CompressedRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler whose rotated generations are gzip files."""

    def rotation_filename(self, default_name: str) -> str:
        return f"{default_name}.gz"

    def rotate(self, source: str, dest: str) -> None:
        """Compress *source* into *dest* and remove *source*.

        Args:
            source: Path to the log file being rotated out.
            dest: Target path (already carrying the ``.gz`` suffix).
        """
        with open(source, "rb") as raw, gzip.open(dest, "wb") as packed:
            shutil.copyfileobj(raw, packed)
        os.remove(source)


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that never crashes on unencodable characters.

    Log messages carry emoji (✅, ❌, ⏰).  When the stream's encoding cannot
    represent them the message is re-encoded with replacement characters.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            try:
                self.stream.write(msg + self.terminator)
            except UnicodeEncodeError:
                encoding = getattr(self.stream, "encoding", None) or "ascii"
                safe_msg = msg.encode(encoding, errors="replace").decode(
                    encoding
                )
                self.stream.write(safe_msg + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


def lifecycle_message(event: str, **fields: Any) -> str:
    """Build a ``[LIFECYCLE]`` log line.

    Fields with a ``None`` value are omitted; the rest are rendered as
    ``key=value`` pairs in the order given.

    Example::

        >>> lifecycle_message("session_start", account="123", section=None)
        '[LIFECYCLE] session_start | account=123'
    """
    parts = [f"[LIFECYCLE] {event}"]
    parts.extend(
        f"{key}={value}" for key, value in fields.items() if value is not None
    )
    return " | ".join(parts)


def setup_logging(
    log_level: str = "INFO", log_file: Optional[str] = None
) -> None:
    """Configure the root logger with console and file handlers.

    Existing root handlers are replaced, so calling this twice (for example
    from tests) does not duplicate output.

    Args:
        log_level: Level name such as ``"DEBUG"`` or ``"INFO"``.  Unknown
            names fall back to ``INFO``.
        log_file: Path of the rotating log file.  Defaults to
            ``logs/rewardbot.log`` relative to the working directory.
    """
    level = getattr(logging, str(log_level).upper(), logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    log_path = log_file or DEFAULT_LOG_FILE
    log_dir = os.path.dirname(log_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    file_handler = CompressedRotatingFileHandler(
        log_path,
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8",
    )
    stream_handler = SafeStreamHandler(sys.stdout)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[file_handler, stream_handler],
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
