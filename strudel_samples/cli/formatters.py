"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from strudel_samples.models.manifest import Manifest
from strudel_samples.models.stats import CacheStats, VerifyResult
from strudel_samples.utils.formatting import format_duration, format_size, short_hash


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ChecksumMismatchError": [
            "• The file on the server may have changed since the hash was published.",
            "• Double-check the value passed to --hash.",
            "• The corrupt download was deleted; run the command again to retry.",
        ],
        "DownloadError": [
            "• Check the URL and your internet connection.",
            "• The server may be temporarily unavailable. Try again later.",
            "• Interrupted pack downloads resume where they stopped.",
        ],
        "UnsupportedFormatError": [
            "• Only .zip, .tar.gz and .tgz archives can be extracted.",
            "• Use --no-extract to keep the file without extracting it.",
        ],
        "ExtractionError": [
            "• The archive was downloaded and verified but could not be unpacked.",
            "• Run `strudel-samples verify` to check the stored archive.",
            "• Use --no-extract to keep the archive without extracting it.",
        ],
        "ConfigurationError": [
            "• Check the [samples] section of your config file.",
            "• Run `strudel-samples config` to see the effective settings.",
        ],
        "InvalidSamplePathError": [
            "• Sample paths must be relative and stay inside the cache directory.",
        ],
        "TimeoutError": [
            "• The transfer took longer than the configured timeout.",
            "• Partial pack downloads are kept and resumed on the next attempt.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the effective configuration."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        content += f"{key} = {'' if value is None else value}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_stats_table(stats: CacheStats):
    """Displays cache usage statistics."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column()

    usage_color = "green"
    if stats.usage_percent >= 100:
        usage_color = "red"
    elif stats.usage_percent >= 80:
        usage_color = "yellow"

    table.add_row("Samples:", f"[green]{stats.count}[/green]")
    table.add_row(
        "Size:",
        f"{stats.total_mb:.2f} MB "
        f"([{usage_color}]{stats.usage_percent:.1f}%[/{usage_color}] "
        f"of {stats.max_mb:g} MB)",
    )
    table.add_row("Directory:", f"[dim]{stats.cache_dir}[/dim]")

    console.print(Panel(table, title="📊 Sample cache stats", border_style="blue"))


def print_sample_list(manifest: Manifest, limit: int = 50):
    """Lists cached samples, most recently used first."""
    console = Console()
    if not manifest.samples:
        console.print("[dim]No samples cached yet.[/dim]")
        return

    table = Table(title=f"📦 Cached samples ({len(manifest.samples)})", box=box.SIMPLE)
    table.add_column("Path", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Hash", style="dim")
    table.add_column("Last used", style="dim")

    entries = sorted(
        manifest.samples.items(), key=lambda item: item[1].last_accessed, reverse=True
    )
    for path, entry in entries[:limit]:
        table.add_row(
            path,
            format_size(entry.size_bytes),
            short_hash(entry.content_hash),
            entry.last_accessed.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)
    if len(entries) > limit:
        console.print(f"[dim]… and {len(entries) - limit} more.[/dim]")


def print_verify_results(results: list[VerifyResult]) -> int:
    """
    Prints one line per verified file.

    Returns:
        The number of failures.
    """
    console = Console()
    failures = 0
    for result in results:
        target = f"{result.url} ({result.path})" if result.url else result.path
        if result.ok:
            console.print(f"[green]✓ {target}[/green]")
        else:
            failures += 1
            console.print(f"[red]✗ {target}: {result.error or 'hash mismatch'}[/red]")
    console.print(f"[dim]Total: {len(results)}, Failures: {failures}[/dim]")
    return failures


def print_packs_table(packs: list[dict[str, Any]]):
    """Displays the built-in pack registry."""
    console = Console()
    table = Table(title="Available sample packs", box=box.SIMPLE)
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Size", justify="right")
    table.add_column("Samples", justify="right")
    table.add_column("Status")

    for pack in packs:
        status = pack["status"]
        status_display = (
            "[green]installed[/green]" if status == "installed" else f"[dim]{status}[/dim]"
        )
        table.add_row(
            pack["name"],
            pack["description"],
            pack["size"],
            str(pack["samples"]),
            status_display,
        )
    console.print(table)


def print_download_summary(path: Path, size_bytes: int, duration_s: float):
    """Displays the result of a finished download."""
    console = Console()
    console.print(
        f"[bold green]✓ Download complete[/bold green] "
        f"[dim]({format_size(size_bytes)} in {format_duration(duration_s)})[/dim]"
    )
    console.print(f"  [dim]{path}[/dim]")
