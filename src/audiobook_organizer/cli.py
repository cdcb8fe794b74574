"""CLI entry point for the audiobook organizer."""

import os
from pathlib import Path

import click
from loguru import logger

from .app import Organizer
from .concurrency import LockError
from .config import OrganizerConfig, load_config
from .errors import ConfigError, OrganizerError
from .ffprobe import duration_to_timestamp
from .models import AudiobookCollection
from .ops.organize import PLACEHOLDERS

log = logger.bind(stage="cli")


def _find_config_file() -> Path | None:
    """Look for .env next to the package or in cwd."""
    pkg_dir = Path(__file__).resolve().parent
    for candidate in [
        pkg_dir.parent.parent / ".env",  # dev: src/../.env
        Path.cwd() / ".env",
    ]:
        if candidate.is_file():
            return candidate
    return None


def _load_env_file(env_file: Path) -> None:
    """Load a shell-style .env file into os.environ (without overriding)."""
    for line in env_file.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip().removeprefix("export ").strip()
        value = value.strip()
        if (value.startswith('"') and value.endswith('"')) or (
            value.startswith("'") and value.endswith("'")
        ):
            value = value[1:-1]
        # Don't override existing env vars (CLI > env > file)
        if key not in os.environ:
            os.environ[key] = value


def _open(ctx: click.Context) -> Organizer:
    """Build the organizer lazily so --help never touches the data dir."""
    if "organizer" not in ctx.obj:
        config: OrganizerConfig = ctx.obj["config"]
        try:
            organizer = Organizer(config)
        except LockError as e:
            raise click.ClickException(str(e)) from e
        ctx.obj["organizer"] = organizer
        ctx.call_on_close(organizer.close)
    return ctx.obj["organizer"]


def _work_line(work) -> str:
    kind = f"[{work.file_count} files]" if isinstance(work, AudiobookCollection) else "[file]"
    flag = "" if work.has_complete_metadata else "  (needs metadata)"
    fav = " *" if work.metadata and work.metadata.is_favorite else ""
    return f"{work.display_name} -- {work.author} {kind}{fav}{flag}"


def _work_path(work) -> Path:
    return work.files[0].path if isinstance(work, AudiobookCollection) else work.path


@click.group()
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    default=None,
    help="Path to .env file.",
)
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Where the cache and library snapshot live.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_file: str | None, data_dir: Path | None, verbose: bool) -> None:
    """Scan, group, and find metadata for audiobook collections."""
    env_file = Path(config_file) if config_file else _find_config_file()
    if env_file and env_file.is_file():
        _load_env_file(env_file)
        log.debug(f"Loaded env from {env_file}")

    # Pass CLI flags as kwargs to avoid env pollution
    config_kwargs: dict = {}
    if data_dir is not None:
        config_kwargs["data_dir"] = data_dir
    if verbose:
        config_kwargs["log_level"] = "DEBUG"

    try:
        config = load_config(**config_kwargs)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    config.setup_logging()
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@main.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--match/--no-match", default=None, help="Resolve metadata for new works.")
@click.option("--recursive/--no-recursive", default=None, help="Descend into subdirectories.")
@click.pass_context
def scan(ctx: click.Context, path: Path, match: bool | None, recursive: bool | None) -> None:
    """Add a directory to the library."""
    org = _open(ctx)
    try:
        result = org.scan_directory(path, match=match, recursive=recursive)
    except OrganizerError as e:
        raise click.ClickException(str(e)) from e

    standalone = result.standalone()
    collections = result.collections()
    click.echo(
        f"Found {result.file_count} audio files: {len(standalone)} single-file works, "
        f"{len(collections)} collections"
    )
    if result.skipped:
        click.echo(f"Skipped {len(result.skipped)} unreadable entries")
    if result.cancelled:
        click.echo("Scan cancelled; partial results kept")


@main.command()
@click.argument("path", required=False, type=click.Path(path_type=Path))
@click.pass_context
def match(ctx: click.Context, path: Path | None) -> None:
    """Find metadata for PATH, or for every work that needs it."""
    org = _open(ctx)
    if path is not None:
        try:
            result = org.match(path.resolve())
        except OrganizerError as e:
            raise click.ClickException(str(e)) from e
        if result.matched:
            click.echo(f"{result.metadata.title} -- {result.metadata.authors_formatted} ({result.source})")
        else:
            click.echo(f"No match for {result.query!r}")
        return

    pending = org.library.works_needing_metadata()
    if not pending:
        click.echo("Every work already has complete metadata")
        return
    with click.progressbar(length=len(pending), label="Matching") as bar:
        batch = org.match_all(on_result=lambda work, result: bar.update(1))
    click.echo(
        f"Batch complete: {batch.matched} matched, {batch.unmatched} unmatched, "
        f"{batch.failed} failed"
    )


@main.command()
@click.argument("query")
@click.option("--limit", default=10, show_default=True, help="Candidates to show.")
@click.option(
    "--apply",
    "apply_to",
    type=click.Path(path_type=Path),
    default=None,
    help="Apply a candidate to this library path.",
)
@click.option("--pick", default=1, show_default=True, help="Candidate number used with --apply.")
@click.pass_context
def search(ctx: click.Context, query: str, limit: int, apply_to: Path | None, pick: int) -> None:
    """Search every provider and list ranked candidates."""
    org = _open(ctx)
    candidates = org.search(query)
    if not candidates:
        click.echo("No candidates found")
        return
    for i, c in enumerate(candidates[:limit], start=1):
        series = f" [{c.series} #{c.series_position}]" if c.series else ""
        click.echo(f"{i:2}. {c.title} -- {c.authors_formatted}{series} ({c.provider})")

    if apply_to is not None:
        if not 1 <= pick <= len(candidates):
            raise click.BadParameter(f"pick must be between 1 and {len(candidates)}", param_hint="--pick")
        try:
            work = org.apply_metadata(apply_to.resolve(), candidates[pick - 1])
        except OrganizerError as e:
            raise click.ClickException(str(e)) from e
        click.echo(f"Applied to {work.display_name}")


@main.command(name="ls")
@click.option("--incomplete", is_flag=True, help="Only works needing metadata.")
@click.option("--favorites", is_flag=True, help="Only favorites.")
@click.option("--tag", default=None, help="Only works with this tag.")
@click.pass_context
def list_works(ctx: click.Context, incomplete: bool, favorites: bool, tag: str | None) -> None:
    """List works in the library."""
    lib = _open(ctx).library
    if incomplete:
        works = lib.works_needing_metadata()
    elif favorites:
        works = lib.favorites()
    elif tag:
        works = lib.works_by_tag(tag)
    else:
        works = lib.works()
    for work in sorted(works, key=lambda w: w.display_name.lower()):
        click.echo(f"{_work_line(work)}\n    {_work_path(work)}")
    click.echo(f"{len(works)} works")


@main.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.pass_context
def show(ctx: click.Context, path: Path) -> None:
    """Show everything known about one work."""
    work = _open(ctx).library.find(path.resolve())
    if work is None:
        raise click.ClickException(f"Not in library: {path}")

    click.echo(_work_line(work))
    md = work.metadata
    if md is not None:
        for label, value in (
            ("Series", f"{md.series} #{md.series_position}".strip(" #") if md.series else ""),
            ("Published", md.published_date),
            ("Publisher", md.publisher),
            ("Provider", md.provider),
            ("Duration", duration_to_timestamp(md.audio_duration) if md.audio_duration else ""),
            ("Rating", f"{md.user_rating}/5" if md.user_rating else ""),
            ("Tags", ", ".join(md.user_tags)),
            ("Bookmarks", str(len(md.bookmarks)) if md.bookmarks else ""),
            ("Notes", str(len(md.notes)) if md.notes else ""),
        ):
            if value:
                click.echo(f"  {label}: {value}")
    if isinstance(work, AudiobookCollection):
        for f in work.files:
            click.echo(f"  - {f.full_name}")


@main.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--off", is_flag=True, help="Remove from favorites.")
@click.pass_context
def favorite(ctx: click.Context, path: Path, off: bool) -> None:
    """Mark a work as favorite."""
    try:
        work = _open(ctx).library.set_favorite(path.resolve(), not off)
    except OrganizerError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"{work.display_name}: favorite={'no' if off else 'yes'}")


@main.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.argument("rating", type=click.IntRange(0, 5))
@click.pass_context
def rate(ctx: click.Context, path: Path, rating: int) -> None:
    """Rate a work from 0 to 5."""
    try:
        work = _open(ctx).library.set_rating(path.resolve(), rating)
    except OrganizerError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"{work.display_name}: rating={rating}")


@main.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.argument("tags", nargs=-1)
@click.pass_context
def tag(ctx: click.Context, path: Path, tags: tuple[str, ...]) -> None:
    """Replace a work's tags (no tags clears them)."""
    try:
        work = _open(ctx).library.set_tags(path.resolve(), list(tags))
    except OrganizerError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"{work.display_name}: tags={', '.join(work.metadata.user_tags) or '-'}")


@main.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--pattern",
    default=None,
    help=f"Rename pattern. Placeholders: {' '.join(PLACEHOLDERS)}",
)
@click.option("--dry-run", is_flag=True, help="Show what would happen without doing it.")
@click.pass_context
def rename(ctx: click.Context, path: Path, pattern: str | None, dry_run: bool) -> None:
    """Rename a work's files from its metadata."""
    org = _open(ctx)
    try:
        renamed = org.library.rename_work(
            path.resolve(), pattern or org.config.rename_pattern, dry_run=dry_run,
        )
    except (OrganizerError, FileExistsError) as e:
        raise click.ClickException(str(e)) from e
    prefix = "[DRY-RUN] " if dry_run else ""
    for p in renamed:
        click.echo(f"{prefix}{p.name}")


@main.command()
@click.pass_context
def clean(ctx: click.Context) -> None:
    """Forget library entries whose files are gone."""
    try:
        dropped = _open(ctx).library.clean()
    except OrganizerError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Removed {dropped} missing files")


@main.command(name="clear-cache")
@click.pass_context
def clear_cache(ctx: click.Context) -> None:
    """Delete every cached metadata lookup."""
    try:
        _open(ctx).clear_cache()
    except (OrganizerError, OSError) as e:
        raise click.ClickException(str(e)) from e
    click.echo("Metadata cache cleared")


@main.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Summarize the library."""
    org = _open(ctx)
    s = org.library.statistics()
    click.echo(f"Works:            {s['works']} ({s['standalone_files']} files, {s['collections']} collections)")
    click.echo(f"Audio files:      {s['audio_files']}")
    click.echo(f"Complete:         {s['complete']}")
    click.echo(f"Needing metadata: {s['needing_metadata']}")
    click.echo(f"Favorites:        {s['favorites']}")
    click.echo(f"Shelves:          {s['shelves']} ({s['series_shelves']} series)")
    click.echo(f"Cached lookups:   {len(org.cache)}")


@main.group()
def shelf() -> None:
    """Manage shelves: custom lists and automatic series groupings."""


@shelf.command(name="ls")
@click.option("--search", "query", default=None, help="Only shelves whose name or description match.")
@click.pass_context
def list_shelves(ctx: click.Context, query: str | None) -> None:
    """List shelves."""
    lib = _open(ctx).library
    shelves = lib.search_shelves(query) if query else lib.shelves
    for s in sorted(shelves, key=lambda s: s.name.lower()):
        auto = " (auto)" if s.auto_created else ""
        click.echo(f"{s.id}  {s.name} [{s.type}] {s.book_count} works{auto}")
    click.echo(f"{len(shelves)} shelves")


@shelf.command(name="show")
@click.argument("shelf_id")
@click.pass_context
def show_shelf(ctx: click.Context, shelf_id: str) -> None:
    """List the works on a shelf."""
    try:
        works = _open(ctx).library.shelf_works(shelf_id)
    except OrganizerError as e:
        raise click.ClickException(str(e)) from e
    for work in works:
        click.echo(f"{_work_line(work)}\n    {_work_path(work)}")


@shelf.command()
@click.argument("name")
@click.argument("paths", nargs=-1, type=click.Path(path_type=Path))
@click.option("--description", default="", help="Free-text description.")
@click.pass_context
def create(ctx: click.Context, name: str, paths: tuple[Path, ...], description: str) -> None:
    """Create a shelf, optionally with some works on it."""
    try:
        s = _open(ctx).library.create_shelf(
            name, description=description, paths=[p.resolve() for p in paths],
        )
    except OrganizerError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Created shelf {s.name} ({s.id}) with {s.book_count} works")


@shelf.command()
@click.argument("shelf_id")
@click.argument("path", type=click.Path(path_type=Path))
@click.pass_context
def add(ctx: click.Context, shelf_id: str, path: Path) -> None:
    """Put a work on a shelf."""
    try:
        s = _open(ctx).library.add_to_shelf(shelf_id, path.resolve())
    except OrganizerError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"{s.name}: {s.book_count} works")


@shelf.command()
@click.argument("shelf_id")
@click.argument("path", type=click.Path(path_type=Path))
@click.pass_context
def remove(ctx: click.Context, shelf_id: str, path: Path) -> None:
    """Take a work off a shelf."""
    try:
        s = _open(ctx).library.remove_from_shelf(shelf_id, path.resolve())
    except OrganizerError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"{s.name}: {s.book_count} works")


@shelf.command()
@click.argument("shelf_id")
@click.pass_context
def delete(ctx: click.Context, shelf_id: str) -> None:
    """Delete a shelf. The works themselves stay in the library."""
    try:
        _open(ctx).library.delete_shelf(shelf_id)
    except OrganizerError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Deleted shelf {shelf_id}")
