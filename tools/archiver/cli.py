"""CLI entry-point for the board archiver."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .api import FourChanAPI
from .archiver import Archiver
from .config import ArchiverConfig, BoardConfig, DatabaseConfig, DiskConfig, S3Config, load_config
from .db import PostRepository
from .errors import ArchiverError

console = Console()
logger = logging.getLogger("archiver.cli")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )
    # Suppress noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("s3transfer").setLevel(logging.WARNING)
    logging.getLogger("psycopg.pool").setLevel(logging.WARNING)


def _print_stats(stats: dict) -> None:
    table = Table(title="Archive Summary", show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="bold")
    table.add_column("Count", justify="right")
    for key, val in stats.items():
        table.add_row(key.replace("_", " ").capitalize(), str(val))
    console.print(table)


@click.group()
@click.option("--database-url", envvar="DATABASE_URL", default=None, help="Full PostgreSQL DSN (overrides --db-*)")
@click.option("--db-host", envvar="DB_HOST", default="localhost", help="PostgreSQL host")
@click.option("--db-port", envvar="DB_PORT", default=5432, type=int, help="PostgreSQL port")
@click.option("--db-name", envvar="DB_NAME", default="archiver", help="PostgreSQL database name")
@click.option("--db-user", envvar="DB_USER", default="archiver", help="PostgreSQL user")
@click.option("--db-password", envvar="DB_PASSWORD", default="archiver", help="PostgreSQL password")
@click.option("--storage", "storage_driver", envvar="STORAGE_DRIVER", default="disk",
              type=click.Choice(["disk", "s3"]), help="Where attachments are stored")
@click.option("--data-dir", envvar="DATA_DIR", default="data", type=click.Path(file_okay=False, path_type=Path),
              help="Root directory for disk storage")
@click.option("--s3-endpoint", envvar="S3_ENDPOINT", default="http://localhost:9000", help="MinIO/S3 endpoint URL")
@click.option("--s3-access-key", envvar="S3_ACCESS_KEY", default="minioadmin", help="S3 access key")
@click.option("--s3-secret-key", envvar="S3_SECRET_KEY", default="minioadmin", help="S3 secret key")
@click.option("--s3-bucket", envvar="S3_BUCKET", default="archiver", help="S3 bucket name")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, **kwargs: object) -> None:
    """4chan Archiver – mirror boards into PostgreSQL and blob storage.

    Polls the configured boards, stores every post, and saves
    thumbnails (and, per board, full attachments) on disk or in S3.
    """
    _setup_logging(bool(kwargs.pop("verbose")))
    ctx.ensure_object(dict)
    ctx.obj["base_cfg"] = ArchiverConfig(
        db=DatabaseConfig(
            host=kwargs["db_host"],  # type: ignore[arg-type]
            port=kwargs["db_port"],  # type: ignore[arg-type]
            dbname=kwargs["db_name"],  # type: ignore[arg-type]
            user=kwargs["db_user"],  # type: ignore[arg-type]
            password=kwargs["db_password"],  # type: ignore[arg-type]
            url=kwargs["database_url"],  # type: ignore[arg-type]
        ),
        s3=S3Config(
            endpoint=kwargs["s3_endpoint"],  # type: ignore[arg-type]
            access_key=kwargs["s3_access_key"],  # type: ignore[arg-type]
            secret_key=kwargs["s3_secret_key"],  # type: ignore[arg-type]
            bucket=kwargs["s3_bucket"],  # type: ignore[arg-type]
        ),
        disk=DiskConfig(data_dir=kwargs["data_dir"]),  # type: ignore[arg-type]
        storage_driver=kwargs["storage_driver"],  # type: ignore[arg-type]
    )


def _fail(exc: BaseException) -> NoReturn:
    logger.error("%s", exc)
    sys.exit(1)


# ─── Commands ────────────────────────────────────────────────────


@cli.command()
@click.option("--config", "config_path", envvar="CONFIG_PATH", default="config.yml",
              type=click.Path(dir_okay=False, path_type=Path), help="YAML board configuration")
@click.option("--cycles", default=0, type=int, help="Stop after N passes (0 = run forever)")
@click.pass_context
def run(ctx: click.Context, config_path: Path, cycles: int) -> None:
    """Archive the configured boards continuously.

    Example: archiver run --config config.yml
    """
    base: ArchiverConfig = ctx.obj["base_cfg"]
    try:
        cfg = load_config(config_path, base)
    except ArchiverError as exc:
        _fail(exc)

    async def _run() -> dict:
        async with Archiver(cfg, reload_config=lambda: load_config(config_path, base)) as archiver:
            try:
                await archiver.run(cycles or None)
            finally:
                _print_stats(archiver.stats)
            return archiver.stats

    console.print(f"[bold]Archiving {len(cfg.boards)} boards: {', '.join(f'/{b}/' for b in cfg.boards)}[/bold]")
    try:
        asyncio.run(_run())
    except ArchiverError as exc:
        _fail(exc)
    except KeyboardInterrupt:
        logger.info("Archiver stopped by user.")


@cli.command()
@click.argument("board")
@click.argument("thread_no", type=int)
@click.option("--no-media", is_flag=True, help="Save thumbnails only")
@click.pass_context
def thread(ctx: click.Context, board: str, thread_no: int, no_media: bool) -> None:
    """Archive a single thread once.

    Example: archiver thread g 12345678
    """
    cfg: ArchiverConfig = ctx.obj["base_cfg"]
    board_cfg = BoardConfig(full_media=not no_media)

    async def _run() -> tuple[bool, dict]:
        async with Archiver(cfg) as archiver:
            ok = await archiver.archive_thread(board, thread_no, board_cfg)
            await archiver.drain()
            _print_stats(archiver.stats)
            return ok, archiver.stats

    console.print(f"[bold]Archiving [cyan]/{board}/{thread_no}[/cyan]...[/bold]")
    try:
        ok, stats = asyncio.run(_run())
    except ArchiverError as exc:
        _fail(exc)
    if ok:
        console.print(f"[green]✓[/green] Thread /{board}/{thread_no} archived")
        if stats["errors"]:
            console.print(f"[yellow]![/yellow] {stats['errors']} post(s) failed, see log")
    elif stats["not_found"]:
        console.print(f"[red]✗[/red] Thread /{board}/{thread_no} not found")
        sys.exit(1)
    elif stats["errors"]:
        console.print(f"[red]✗[/red] Thread /{board}/{thread_no} could not be fetched, see log")
        sys.exit(1)
    else:
        console.print(f"[red]✗[/red] Thread /{board}/{thread_no} unchanged or filtered")
        sys.exit(1)


@cli.command(name="init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the posts table if it does not exist."""
    cfg: ArchiverConfig = ctx.obj["base_cfg"]

    async def _run() -> None:
        async with PostRepository(cfg.db) as repo:
            await repo.ensure_schema()

    try:
        asyncio.run(_run())
    except ArchiverError as exc:
        _fail(exc)
    console.print("[green]✓[/green] Schema ready")


@cli.command(name="list-boards")
def list_boards() -> None:
    """List all available 4chan boards."""

    async def _fetch() -> list:
        async with FourChanAPI() as api:
            return await api.get_boards()

    try:
        boards = asyncio.run(_fetch())
    except ArchiverError as exc:
        _fail(exc)
    table = Table(title="4chan Boards", show_header=True, header_style="bold cyan")
    table.add_column("Board", style="bold")
    table.add_column("Title")
    table.add_column("SFW", justify="center")
    table.add_column("Pages", justify="right")
    for b in sorted(boards, key=lambda x: x.board):
        sfw = "✓" if b.ws_board else "✗"
        table.add_row(f"/{b.board}/", b.title, sfw, str(b.pages))
    console.print(table)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
