"""Rename and move audiobook files using their resolved metadata.

Placeholders understood by rename patterns:
    {Title} {Author} {Authors} {Year} {Publisher} {Series} {SeriesPosition}

When a book has no series, the series placeholders and the separator that
follows them are dropped, so "{Author} - {Series} {SeriesPosition} - {Title}"
renders as "Author - Title".
"""

import shutil
from pathlib import Path

from loguru import logger

from ..models import AudiobookFile, AudiobookMetadata
from ..sanitize import sanitize_filename

log = logger.bind(stage="organize")

PLACEHOLDERS = (
    "{Title}", "{Author}", "{Authors}", "{Year}", "{Publisher}", "{Series}", "{SeriesPosition}",
)


def render_pattern(metadata: AudiobookMetadata, pattern: str) -> str:
    """Fill a pattern with metadata values (no extension, not yet sanitized)."""
    name = (
        pattern
        .replace("{Title}", metadata.title)
        .replace("{Authors}", metadata.authors_formatted)
        .replace("{Author}", metadata.primary_author)
        .replace("{Year}", metadata.year)
        .replace("{Publisher}", metadata.publisher)
    )

    if metadata.series:
        name = name.replace("{Series}", metadata.series)
        if metadata.series_position:
            name = name.replace("{SeriesPosition}", metadata.series_position)
        else:
            for token in (" {SeriesPosition}", "{SeriesPosition} ", "{SeriesPosition}"):
                name = name.replace(token, "")
    else:
        for token in (
            "{Series} {SeriesPosition} - ",
            "{Series} - ",
            "{Series} {SeriesPosition}",
            "{Series}",
            "{SeriesPosition}",
        ):
            name = name.replace(token, "")
    return name


def generate_new_filename(
    file: AudiobookFile,
    pattern: str,
    metadata: AudiobookMetadata | None = None,
) -> str:
    """New basename (with extension) for file; unchanged if there is no metadata."""
    md = metadata or file.metadata
    if md is None or not md.title:
        return file.full_name

    name = sanitize_filename(render_pattern(md, pattern))
    if not name:
        return file.full_name
    return f"{name}{file.extension}"


def rename_file(file: AudiobookFile, new_name: str, dry_run: bool = False) -> Path:
    """Rename file within its directory. Returns the new path.

    Raises FileExistsError when another file already has that name.
    """
    dest = file.path.with_name(new_name)
    if dest == file.path:
        return dest
    if dest.exists():
        raise FileExistsError(f"{dest} already exists")
    if dry_run:
        log.info(f"[dry-run] Rename {file.path.name} -> {new_name}")
        return dest

    log.info(f"Rename {file.path.name} -> {new_name}")
    file.path.rename(dest)
    return dest


def move_file(
    file: AudiobookFile,
    dest_dir: Path,
    dry_run: bool = False,
    library_root: Path | None = None,
    dest_filename: str | None = None,
) -> Path:
    """Move an audiobook file to dest_dir and prune emptied parent dirs.

    When dest_filename is provided, uses it instead of the current name.
    Raises FileExistsError when a different file already sits at the target.
    """
    filename = dest_filename if dest_filename else file.path.name
    dest_file = dest_dir / filename

    if dest_file == file.path:
        return dest_file
    if dest_file.exists():
        raise FileExistsError(f"{dest_file} already exists")
    if dry_run:
        log.info(f"[dry-run] Move {file.path} -> {dest_file}")
        return dest_file

    dest_dir.mkdir(parents=True, exist_ok=True)
    log.info(f"Move {file.path} -> {dest_file}")
    shutil.move(str(file.path), str(dest_file))

    _cleanup_empty_parents(file.path.parent, stop_at=library_root)
    return dest_file


def _cleanup_empty_parents(directory: Path, stop_at: Path | None) -> None:
    """Remove empty parent directories after a file move.

    Walks up from directory, removing each empty dir until
    reaching stop_at or a non-empty directory.
    """
    current = directory
    while current != stop_at and current != current.parent:
        try:
            if current.is_dir() and not any(current.iterdir()):
                log.debug(f"Removed empty dir: {current}")
                current.rmdir()
            else:
                break
        except OSError:
            break
        current = current.parent
