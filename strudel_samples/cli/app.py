"""
Defines the command-line interface for managing the sample cache using Typer.
"""

import asyncio
import logging
import os
import time
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from strudel_samples import __version__
from strudel_samples.media.downloader import SampleDownloader
from strudel_samples.models.config import DEFAULT_CACHE_SIZE_MB, SamplesConfig
from strudel_samples.storage.cache import ClearScope, SampleCache
from strudel_samples.storage.config_manager import ConfigManager

from .formatters import (
    print_config,
    print_download_summary,
    print_packs_table,
    print_sample_list,
    print_stats_table,
    print_verify_results,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("strudel_samples")

app = typer.Typer(
    name="strudel-samples",
    help=(
        "Manage the local Strudel sample cache: download packs, verify integrity"
        " and reclaim space. Use 'strudel-samples <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "strudel-cli"


CONFIG_DIR = get_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


def _load_config(cache_dir: Path | None = None) -> SamplesConfig:
    cli_options = {"cache_dir": str(cache_dir) if cache_dir else None}
    return ConfigManager(CONFIG_FILE).load_config(cli_options)


async def _open_cache(config: SamplesConfig) -> SampleCache:
    cache = SampleCache(config)
    await cache.initialize()
    return cache


def _show_summary(config: SamplesConfig, limit: int = 50) -> None:
    async def _summary():
        cache = await _open_cache(config)
        print_stats_table(cache.get_stats())
        print_sample_list(cache.manifest, limit=limit)

    asyncio.run(_summary())


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    cache_dir: Path | None = typer.Option(
        None,
        "--cache-dir",
        help="Use this cache directory instead of the configured one.",
    ),
):
    """Strudel sample cache manager"""
    if version:
        console.print(
            f"[bold]strudel-samples[/bold] version [cyan]{__version__}[/cyan]"
        )
        raise typer.Exit()

    log_level = "WARNING"
    if verbose == 1:
        log_level = "INFO"
    elif verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("strudel_samples").setLevel(log_level)

    ctx.obj = {"cache_dir": cache_dir}

    if ctx.invoked_subcommand is None:
        _show_summary(_load_config(cache_dir))


@app.command(name="list")
def list_command(
    ctx: typer.Context,
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum rows to show."),
):
    """List cached samples, most recently used first."""
    _show_summary(_load_config((ctx.obj or {}).get("cache_dir")), limit=limit)


@app.command()
def stats(ctx: typer.Context):
    """Show cache usage against the size limit."""
    config = _load_config((ctx.obj or {}).get("cache_dir"))

    async def _stats():
        cache = await _open_cache(config)
        print_stats_table(cache.get_stats())

    asyncio.run(_stats())


@app.command()
def verify(ctx: typer.Context):
    """Re-hash every cached sample and pack and report mismatches."""
    config = _load_config((ctx.obj or {}).get("cache_dir"))

    async def _verify() -> int:
        cache = await _open_cache(config)
        console.print("[blue]🔍 Verifying sample cache...[/blue]")
        results = await cache.verify_all()
        return print_verify_results(results)

    if asyncio.run(_verify()) > 0:
        raise typer.Exit(code=1)


@app.command()
def clear(
    ctx: typer.Context,
    scope: ClearScope = typer.Option(
        ClearScope.SAMPLES,
        "--scope",
        help="What to remove: samples, packs, or all.",
        case_sensitive=False,
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Bypass the confirmation prompt.",
    ),
):
    """Remove cached content."""
    if not force and not typer.confirm(
        f"Are you sure you want to remove all cached {scope.value}?"
    ):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    config = _load_config((ctx.obj or {}).get("cache_dir"))

    async def _clear() -> int:
        cache = await _open_cache(config)
        console.print("[blue]🗑️  Clearing sample cache...[/blue]")
        return await cache.clear(scope)

    removed = asyncio.run(_clear())
    console.print(f"[green]✓ Removed {removed} entries.[/green]")


@app.command()
def download(
    ctx: typer.Context,
    target: str = typer.Argument(..., help="Pack URL or registry pack name."),
    expected_hash: str | None = typer.Option(
        None, "--hash", help="Expected SHA-256 of the downloaded archive."
    ),
    extract: bool = typer.Option(
        True, "--extract/--no-extract", help="Extract .zip/.tar.gz archives."
    ),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Abort the transfer after this many seconds."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Do not show a progress bar."
    ),
):
    """Download a sample pack, resuming a previous partial download."""
    config = _load_config((ctx.obj or {}).get("cache_dir"))

    async def _download():
        cache = await _open_cache(config)
        async with SampleDownloader(cache) as downloader:
            url = downloader.resolve_pack(target)
            console.print(f"[blue]⬇️  Downloading: {url}[/blue]")
            start_time = time.monotonic()
            progress_manager = ProgressManager(console=console, quiet=quiet)
            async with progress_manager:
                task_id = progress_manager.add_download_task(
                    downloader.pack_name(url)
                )
                success = False
                try:
                    path = await downloader.download_pack(
                        url,
                        expected_hash=expected_hash,
                        extract=extract,
                        on_progress=progress_manager.callback_for(task_id),
                        timeout=timeout,
                    )
                    success = True
                finally:
                    progress_manager.remove_task(task_id, success=success)
            size_bytes = path.stat().st_size
            print_download_summary(path, size_bytes, time.monotonic() - start_time)

    asyncio.run(_download())


@app.command()
def fetch(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="URL of a single sample file."),
    destination: str | None = typer.Argument(
        None, help="Path inside the cache. Derived from the URL when omitted."
    ),
    expected_hash: str | None = typer.Option(
        None, "--hash", help="Expected SHA-256 of the sample."
    ),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Abort the transfer after this many seconds."
    ),
):
    """Download a single sample into the cache."""
    config = _load_config((ctx.obj or {}).get("cache_dir"))

    async def _fetch():
        cache = await _open_cache(config)
        target = destination or cache.url_destination(url)
        start_time = time.monotonic()
        async with SampleDownloader(cache) as downloader:
            path = await downloader.download_sample(
                url, target, expected_hash=expected_hash, timeout=timeout
            )
        print_download_summary(path, path.stat().st_size, time.monotonic() - start_time)

    asyncio.run(_fetch())


@app.command()
def packs(ctx: typer.Context):
    """List the built-in sample packs and whether they are installed."""
    config = _load_config((ctx.obj or {}).get("cache_dir"))

    async def _packs():
        cache = await _open_cache(config)
        print_packs_table(SampleDownloader(cache).list_available_packs())

    asyncio.run(_packs())


@app.command(name="config")
def show_config(ctx: typer.Context):
    """Display the effective configuration."""
    config = _load_config((ctx.obj or {}).get("cache_dir"))
    config_data = config.model_dump()
    config_data["resolved_cache_dir"] = config.resolved_cache_dir
    print_config(CONFIG_FILE, config_data)


@app.command()
def init(
    ctx: typer.Context,
    cache_size_mb: float = typer.Option(
        DEFAULT_CACHE_SIZE_MB, "--cache-size-mb", help="Cache size limit in MB."
    ),
    auto_download: bool = typer.Option(
        False,
        "--auto-download/--no-auto-download",
        help="Download missing samples on demand.",
    ),
    request_timeout: float | None = typer.Option(
        None, "--request-timeout", help="Socket read timeout in seconds."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing file without asking."
    ),
):
    """Write a configuration file. --cache-dir is stored as the cache location."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    cache_dir = (ctx.obj or {}).get("cache_dir")
    ConfigManager(CONFIG_FILE).save_config(
        {
            "cache_size_mb": cache_size_mb,
            "cache_dir": str(cache_dir) if cache_dir else None,
            "auto_download": auto_download,
            "request_timeout": request_timeout,
        }
    )
    console.print(f"[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
