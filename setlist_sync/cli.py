"""
Command-line interface for setlist-sync.

This module implements the CLI using Click, a thin surface over
SetlistStore. Every command loads both collections from the remote, runs
one operation through the store (so writes are confirmed and refreshed
exactly as in any other caller), and prints the result.
rich-click is used for the output colors.

Commands:
    setlist songs [--search Q] [--key K] [--singer S]   List songs
    setlist setlists                                    List setlists
    setlist show <setlist-id>                           Show one setlist
    setlist add-song <title> [--artist ...]             Create a song
    setlist delete-song <song-id>                       Delete a song
    setlist add-setlist <name> [--venue ...]            Create a setlist
    setlist delete-setlist <setlist-id>                 Delete a setlist
    setlist add-to <setlist-id> <song-id>               Append a song
    setlist duplicate <from-id> <to-id>                 Copy items across
    setlist seed [--force]                              Create demo data
    setlist check-config                                Show endpoint status

Global options:
    --config <path>        Configuration file (default: ./config.yaml)
    --log-level <level>    Console log level (overrides the config file)

Configuration:
    Endpoint URLs come from config.yaml and/or SETLIST_*_URL environment
    variables (a .env file in the current directory is honoured).

Records marked with '*' have not been confirmed by a remote read yet.
"""

import asyncio
import sys
from pathlib import Path
from typing import Awaitable, Callable

import rich_click as click
from tqdm import tqdm

# Configure rich-click for better help formatting
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = ""
click.rich_click.MAX_WIDTH = 100
click.rich_click.COMMAND_GROUPS = {
    "setlist": [
        {
            "name": "Browse",
            "commands": ["songs", "setlists", "show"],
        },
        {
            "name": "Edit",
            "commands": [
                "add-song", "delete-song", "add-setlist",
                "delete-setlist", "add-to", "duplicate",
            ],
        },
        {
            "name": "Setup",
            "commands": ["seed", "check-config"],
        },
    ],
}

from setlist_sync import __version__
from setlist_sync.catalog.models import Setlist, Song
from setlist_sync.core import (
    Config,
    ConfigurationError,
    NotFoundLocally,
    SetlistSyncError,
    TransportError,
    get_logger,
    load_config,
    setup_logging,
    shutdown_logging,
)
from setlist_sync.core.config import ENDPOINT_ENV_VARS
from setlist_sync.remote import ConfirmationPolicy, HttpTransport, RemoteGateway
from setlist_sync.state import SetlistStore, queries

logger = get_logger(__name__)

Operation = Callable[[SetlistStore], Awaitable[None]]

# Demo data created by `setlist seed`
SEED_SONGS = [
    {"title": "Sweet Child O' Mine", "artist": "Guns N' Roses", "singer": "John",
     "key": "D", "notes": "Great opener"},
    {"title": "Wonderwall", "artist": "Oasis", "singer": "Sarah",
     "key": "Em", "notes": "Crowd favorite"},
    {"title": "Hotel California", "artist": "Eagles", "singer": "Mike", "key": "Bm"},
    {"title": "Brown Eyed Girl", "artist": "Van Morrison", "singer": "John", "key": "G"},
    {"title": "Don't Stop Believin'", "artist": "Journey", "singer": "Sarah", "key": "E"},
]

SEED_SETLIST = {
    "name": "Friday night - bar gig",
    "venue": "The Blue Note",
    "city": "New York",
    "date": "2024-12-20",
    "notes": "First set starts at 9pm",
}

# Number of seed songs placed on the seed setlist
SEED_SETLIST_SONGS = 3


@click.group()
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    metavar="<config.yaml>",
    help="Configuration file (default: ./config.yaml)"
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Console log level (overrides the config file)"
)
@click.version_option(__version__, prog_name="setlist-sync")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """
    setlist-sync: Manage band songs and setlists stored behind n8n webhooks.

    \b
    EXAMPLES:
        setlist songs --search wonder
        setlist add-song "Wonderwall" --artist Oasis --key Em
        setlist add-to 7 12
        setlist show 7
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


# ---------------------------------------------------------------------------
# Browse
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--search", default="", help="Substring of title, artist or singer")
@click.option("--key", default=None, help="Only songs in this key")
@click.option("--singer", default=None, help="Only songs sung by this singer")
@click.pass_context
def songs(ctx: click.Context, search: str, key: str | None, singer: str | None) -> None:
    """List songs."""
    async def operation(store: SetlistStore) -> None:
        matches = queries.search_songs(store.songs, search, key=key, singer=singer)
        if not matches:
            click.echo("No songs found.")
            return
        for song in matches:
            click.echo(_format_song(song))
        click.echo(f"\n{len(matches)} of {len(store.songs)} song(s)")
        click.echo(f"Keys: {', '.join(queries.distinct_keys(store.songs)) or '-'}")
        click.echo(f"Singers: {', '.join(queries.distinct_singers(store.songs)) or '-'}")

    _run(ctx, operation)


@cli.command()
@click.pass_context
def setlists(ctx: click.Context) -> None:
    """List setlists."""
    async def operation(store: SetlistStore) -> None:
        if not store.setlists:
            click.echo("No setlists found.")
            return
        for setlist in store.setlists:
            click.echo(_format_setlist(setlist))

    _run(ctx, operation)


@cli.command()
@click.argument("setlist_id")
@click.pass_context
def show(ctx: click.Context, setlist_id: str) -> None:
    """Show a setlist with its songs."""
    async def operation(store: SetlistStore) -> None:
        setlist = store.get_setlist(setlist_id)
        click.echo(_format_setlist(setlist))
        if setlist.notes:
            click.echo(f"  {setlist.notes}")
        click.echo("")

        by_id = {song.id: song for song in store.songs}
        for item in setlist.items:
            song = by_id.get(item.song_id)
            title = song.label if song else f"(unknown song {item.song_id})"
            key = queries.effective_key(item, song) or "-"
            singer = queries.effective_singer(item, song) or "-"
            click.echo(f"  {item.position + 1:>2}. {title}  [{key}]  {singer}")
            if item.notes:
                click.echo(f"      {item.notes}")
        if not setlist.items:
            click.echo("  (no songs yet)")

    _run(ctx, operation)


# ---------------------------------------------------------------------------
# Edit
# ---------------------------------------------------------------------------

@cli.command("add-song")
@click.argument("title")
@click.option("--artist", default=None)
@click.option("--singer", default=None)
@click.option("--key", default=None)
@click.option("--tempo", default=None, help="Tempo in BPM")
@click.option("--notes", default=None)
@click.pass_context
def add_song(
    ctx: click.Context,
    title: str,
    artist: str | None,
    singer: str | None,
    key: str | None,
    tempo: str | None,
    notes: str | None
) -> None:
    """Create a song."""
    async def operation(store: SetlistStore) -> None:
        song = await store.add_song(
            title, artist=artist, singer=singer, key=key, tempo=tempo, notes=notes
        )
        click.echo(f"Added {_format_song(song)}")

    _run(ctx, operation)


@cli.command("delete-song")
@click.argument("song_id")
@click.pass_context
def delete_song(ctx: click.Context, song_id: str) -> None:
    """Delete a song and remove it from every setlist."""
    async def operation(store: SetlistStore) -> None:
        song = store.get_song(song_id)
        await store.delete_song(song_id)
        click.echo(f"Deleted '{song.label}'")

    _run(ctx, operation)


@cli.command("add-setlist")
@click.argument("name")
@click.option("--venue", default=None)
@click.option("--city", default=None)
@click.option("--date", default=None, help="YYYY-MM-DD or MM/DD/YYYY")
@click.option("--notes", default=None)
@click.pass_context
def add_setlist(
    ctx: click.Context,
    name: str,
    venue: str | None,
    city: str | None,
    date: str | None,
    notes: str | None
) -> None:
    """Create an empty setlist."""
    async def operation(store: SetlistStore) -> None:
        setlist = await store.add_setlist(name, venue=venue, city=city, date=date, notes=notes)
        click.echo(f"Added {_format_setlist(setlist)}")

    _run(ctx, operation)


@cli.command("delete-setlist")
@click.argument("setlist_id")
@click.pass_context
def delete_setlist(ctx: click.Context, setlist_id: str) -> None:
    """Delete a setlist."""
    async def operation(store: SetlistStore) -> None:
        setlist = store.get_setlist(setlist_id)
        await store.delete_setlist(setlist_id)
        click.echo(f"Deleted '{setlist.name}'")

    _run(ctx, operation)


@cli.command("add-to")
@click.argument("setlist_id")
@click.argument("song_id")
@click.option("--key", "key_override", default=None, help="Key for this gig only")
@click.option("--singer", "singer_override", default=None, help="Singer for this gig only")
@click.option("--notes", default=None)
@click.pass_context
def add_to(
    ctx: click.Context,
    setlist_id: str,
    song_id: str,
    key_override: str | None,
    singer_override: str | None,
    notes: str | None
) -> None:
    """Append a song to a setlist."""
    async def operation(store: SetlistStore) -> None:
        if store.is_song_in_setlist(setlist_id, song_id):
            click.echo("Song is already in this setlist; adding it again.")
        item = await store.add_item(
            setlist_id, song_id,
            key_override=key_override, singer_override=singer_override, notes=notes,
        )
        setlist = store.get_setlist(setlist_id)
        click.echo(f"Added song {item.song_id} to '{setlist.name}' at position {item.position + 1}")

    _run(ctx, operation)


@cli.command()
@click.argument("from_setlist_id")
@click.argument("to_setlist_id")
@click.pass_context
def duplicate(ctx: click.Context, from_setlist_id: str, to_setlist_id: str) -> None:
    """Append copies of one setlist's songs to another setlist."""
    async def operation(store: SetlistStore) -> None:
        items = await store.duplicate_items(from_setlist_id, to_setlist_id)
        target = store.get_setlist(to_setlist_id)
        click.echo(f"'{target.name}' now has {len(items)} song(s)")

    _run(ctx, operation)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--force", is_flag=True, help="Seed even if the remote already has data")
@click.pass_context
def seed(ctx: click.Context, force: bool) -> None:
    """Create demo songs and a demo setlist."""
    async def operation(store: SetlistStore) -> None:
        if (store.songs or store.setlists) and not force:
            click.echo("Remote already has data; nothing seeded (use --force to seed anyway).")
            return

        created: list[Song] = []
        with tqdm(total=len(SEED_SONGS) + 1, desc="Seeding", unit="record") as progress:
            for fields in SEED_SONGS:
                created.append(await store.add_song(**fields))
                progress.update(1)

            setlist = await store.add_setlist(**SEED_SETLIST)
            for song in created[:SEED_SETLIST_SONGS]:
                store.stage_add_item(setlist.id, song.id)
            await store.save_items(setlist.id)
            progress.update(1)

        click.echo(f"Seeded {len(created)} song(s) and setlist '{setlist.name}'")

    _run(ctx, operation)


@cli.command("check-config")
@click.pass_context
def check_config(ctx: click.Context) -> None:
    """Show which remote endpoints are configured."""
    async def operation(store: SetlistStore) -> None:
        endpoints = store.gateway.endpoints
        missing = 0
        for category, env_var in ENDPOINT_ENV_VARS.items():
            if endpoints.is_configured(category):
                click.secho(f"  ok       {category}", fg="green")
            elif category == "delete_song" and endpoints.is_configured("save_song"):
                click.echo(f"  ok       {category} (uses save_song)")
            else:
                missing += 1
                click.secho(f"  missing  {category}  ({env_var})", fg="yellow")
        if missing:
            click.echo(f"\n{missing} endpoint(s) not configured")

    _run(ctx, operation, load=False)


# ---------------------------------------------------------------------------
# Plumbing
# ---------------------------------------------------------------------------

def _run(ctx: click.Context, operation: Operation, load: bool = True) -> None:
    """
    Load configuration, set up logging, and run one store operation.

    Args:
        ctx: Click context holding the global options.
        operation: Coroutine function receiving the loaded store.
        load: Read both collections before running the operation.

    Exit codes:
        0   success
        1   configuration, remote or local lookup error
        130 interrupted
    """
    try:
        config = load_config(ctx.obj["config_path"])
        setup_logging(ctx.obj["log_level"] or config.logging.level, config.logging.directory)
        logger.debug("setlist-sync starting")
        asyncio.run(_with_store(config, operation, load))

    except ConfigurationError as e:
        click.secho(f"Configuration error: {e.message}", fg="red", err=True)
        sys.exit(1)

    except TransportError as e:
        click.secho(f"Remote error: {e.message}", fg="red", err=True)
        logger.debug(f"Remote error details: {e.details}")
        sys.exit(1)

    except NotFoundLocally as e:
        click.secho(f"Not found: {e.message}", fg="red", err=True)
        sys.exit(1)

    except SetlistSyncError as e:
        click.secho(f"Error: {e.message}", fg="red", err=True)
        sys.exit(1)

    except ValueError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)

    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)

    finally:
        shutdown_logging()


async def _with_store(config: Config, operation: Operation, load: bool) -> None:
    async with HttpTransport(timeout=config.network.timeout) as transport:
        gateway = RemoteGateway(
            config.endpoints, transport, config.confirmation.acceptance_markers
        )
        store = SetlistStore(gateway, ConfirmationPolicy.from_config(config.confirmation))
        if load:
            await store.load()
        await operation(store)


def _format_song(song: Song) -> str:
    marker = "" if song.settled else "*"
    details = "  ".join(
        part for part in (
            f"[{song.key}]" if song.key else "",
            song.singer or "",
            f"{song.tempo} bpm" if song.tempo else "",
        ) if part
    )
    return f"{song.id:>4}{marker:1} {song.label}  {details}".rstrip()


def _format_setlist(setlist: Setlist) -> str:
    marker = "" if setlist.settled else "*"
    where = ", ".join(part for part in (setlist.venue, setlist.city) if part)
    parts = [f"{setlist.id:>4}{marker:1} {setlist.name}"]
    if setlist.date:
        parts.append(setlist.date)
    if where:
        parts.append(where)
    parts.append(f"{len(setlist.items)} song(s)")
    return "  ".join(parts)


def main() -> None:
    """
    Entry point for the CLI.

    This function is called when running `setlist` from the command line.
    It invokes the Click CLI group.
    """
    cli(obj={})


if __name__ == "__main__":
    main()
