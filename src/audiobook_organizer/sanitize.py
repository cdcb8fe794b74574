"""Filename sanitization and stable file ids."""

import hashlib
import re
from pathlib import Path

from loguru import logger

log = logger.bind(stage="sanitize")


def sanitize_filename(filename: str) -> str:
    """Sanitize a filename component (not a full path).

    Replaces characters that are invalid on common filesystems with
    underscores, normalizes whitespace and dash runs, strips leading dots,
    and truncates to 255 bytes preserving the extension.
    """
    log.debug(f"sanitize_filename(filename='{filename}')")

    sanitized = re.sub(r'[<>:"/\\|?*]', "_", filename)
    sanitized = re.sub(r"\s+", " ", sanitized)
    sanitized = re.sub(r"--+", "-", sanitized)
    sanitized = re.sub(r"__+", "_", sanitized)
    # Dashes left dangling by empty placeholders: "A -  - B" -> "A - B"
    sanitized = re.sub(r"\s*-\s*-\s*", " - ", sanitized)
    sanitized = re.sub(r"^[\s.\-]+|[\s\-]+$", "", sanitized)

    original_len = len(sanitized.encode("utf-8"))
    if original_len > 255:
        p = Path(sanitized)
        ext = p.suffix
        stem = p.stem
        if ext:
            while len((stem + ext).encode("utf-8")) > 255 and stem:
                stem = stem[:-1]
            sanitized = stem + ext
        else:
            while len(sanitized.encode("utf-8")) > 255 and sanitized:
                sanitized = sanitized[:-1]
        log.debug(f"Truncated filename from {original_len} to {len(sanitized.encode('utf-8'))} bytes: '{sanitized}'")

    return sanitized


def generate_file_id(path: Path | str) -> str:
    """16-char hex id derived from the absolute path."""
    return hashlib.sha256(str(path).encode("utf-8")).hexdigest()[:16]
