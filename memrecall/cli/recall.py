#!/usr/bin/env python3
"""
Command line client for memrecall.

Usage:
    recall search "query"   - Search captured memories
    recall recent           - Show the latest memories
    recall stats            - Store and cache statistics
    recall status           - Check daemon status
    recall serve            - Run the daemon in the foreground
    recall reindex          - Rebuild the vector index from the record store
"""

import asyncio
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import click
import httpx
from loguru import logger
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

console = Console()

# Default daemon URL
DAEMON_URL = os.environ.get("MEMRECALL_URL", "http://localhost:8765")


@click.group()
@click.option("--url", default=DAEMON_URL, show_default=True, help="Daemon base URL")
@click.pass_context
def cli(ctx, url: str):
    """memrecall - find what you saw on screen."""
    ctx.ensure_object(dict)
    ctx.obj["url"] = url.rstrip("/")


@cli.command()
@click.argument("query")
@click.option("--app", "-a", help="Restrict to an app or site")
@click.option("--host", help="Restrict to a url host")
@click.option("--from", "time_from", help="Window start (ISO-8601 or epoch ms)")
@click.option("--to", "time_to", help="Window end (ISO-8601 or epoch ms)")
@click.option("-k", type=int, help="Max candidates")
@click.option("--explain", is_flag=True, help="Show the parsed query, stage timings and score breakdown")
@click.pass_context
def search(ctx, query: str, app: Optional[str], host: Optional[str], time_from: Optional[str],
           time_to: Optional[str], k: Optional[int], explain: bool):
    """Search captured memories."""
    params = {"q": query, "app": app, "host": host, "from": time_from, "to": time_to, "k": k}
    params = {key: value for key, value in params.items() if value is not None}
    asyncio.run(search_memories(ctx.obj["url"], params, explain))


async def search_memories(url: str, params: dict, explain: bool = False):
    """Send search request to daemon."""
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console
        ) as progress:
            progress.add_task(description="Searching...", total=None)

            async with httpx.AsyncClient() as client:
                response = await client.get(f"{url}/search", params=params, timeout=5.0)

        if response.status_code == 200:
            display_search_results(response.json(), explain)
        elif response.status_code == 400:
            error = response.json().get("error", {})
            console.print(f"[red]Invalid request[/red] ({error.get('field')}): {error.get('message')}")
        else:
            console.print(f"[red]Search failed:[/red] {response.text}")

    except httpx.ConnectError:
        console.print("[red]Cannot connect to daemon. Is it running?[/red]")
        console.print("Start with: [cyan]recall serve[/cyan]")
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")


def _format_ts(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).astimezone().strftime("%Y-%m-%d %H:%M")


def display_cards(cards: list, title: str) -> None:
    table = Table(title=title)
    table.add_column("When", style="dim")
    table.add_column("App", style="magenta")
    table.add_column("Answer", style="cyan", no_wrap=False)
    table.add_column("Score", justify="right")
    table.add_column("Snippet", no_wrap=False)

    for card in cards:
        nugget = card.get("nugget")
        answer = nugget["value"] if nugget else card.get("title_snippet", "")
        snippet = card.get("snippet", "")
        table.add_row(
            _format_ts(card["ts"]),
            card.get("url_host") or card.get("app", ""),
            answer,
            f"{card.get('score', 0):.2f}",
            snippet[:100] + ("..." if len(snippet) > 100 else ""),
        )

    console.print(table)


def display_search_results(data: dict, explain: bool = False):
    """Display search results in a table."""
    cards = data.get("cards", [])
    timing = data.get("timing", {})

    if data.get("degraded"):
        console.print(f"[yellow]Degraded: {', '.join(data['degraded'])} unavailable[/yellow]")

    if not cards:
        console.print("[yellow]No results found[/yellow]")
        return

    mode = "Exact hit" if data.get("mode") == "exact" else "Memory jog"
    cached = " cached" if data.get("cached") else ""
    display_cards(
        cards,
        f"{mode} (confidence {data.get('confidence', 0):.2f}, {timing.get('total', 0):.1f}ms{cached})",
    )

    if explain:
        parsed = data.get("query_parsed") or {}
        console.print("\n[bold]Parsed query:[/bold]")
        for key, value in parsed.items():
            console.print(f"  {key}: {value}")
        console.print("\n[bold]Timings (ms):[/bold]")
        for stage, ms in timing.items():
            console.print(f"  {stage}: {ms:.1f}")
        display_breakdown(cards)


def display_breakdown(cards: list) -> None:
    table = Table(title="Score breakdown")
    table.add_column("Card", style="dim")
    for column in ("Semantic", "Keyword", "Recency", "App", "Source", "Score"):
        table.add_column(column, justify="right")

    def fmt(value):
        return "-" if value is None else f"{value:.2f}"

    for card in cards:
        parts = card.get("explain") or {}
        table.add_row(
            card["id"],
            fmt(parts.get("semantic")),
            fmt(parts.get("keyword")),
            fmt(parts.get("recency")),
            fmt(parts.get("app_bonus")),
            fmt(parts.get("source_bonus")),
            fmt(card.get("score")),
        )

    console.print(table)


@cli.command()
@click.option("--limit", "-l", default=20, help="Number of memories")
@click.pass_context
def recent(ctx, limit: int):
    """Show the most recent memories."""
    asyncio.run(show_recent(ctx.obj["url"], limit))


async def show_recent(url: str, limit: int):
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{url}/recent", params={"limit": limit}, timeout=5.0)

        if response.status_code == 200:
            cards = response.json().get("cards", [])
            if cards:
                display_cards(cards, f"Recent memories ({len(cards)})")
            else:
                console.print("[yellow]No memories captured yet[/yellow]")
        else:
            console.print(f"[red]Failed to get recent memories:[/red] {response.text}")

    except httpx.ConnectError:
        console.print("[red]Cannot connect to daemon[/red]")
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")


@cli.command()
@click.pass_context
def stats(ctx):
    """Show store, cache and channel statistics."""
    asyncio.run(show_stats(ctx.obj["url"]))


async def show_stats(url: str):
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{url}/stats", timeout=5.0)

        if response.status_code != 200:
            console.print(f"[red]Failed to get stats:[/red] {response.text}")
            return

        data = response.json()
        console.print(f"Memories: {data.get('total_memories', 0)} across {data.get('unique_apps', 0)} apps")
        console.print(f"Searches: {data.get('total_searches', 0)} "
                      f"(avg {data.get('average_latency_ms', 0):.1f}ms)")
        console.print(f"Semantic channel: {'available' if data.get('semantic_available') else 'unavailable'}")

        apps = data.get("app_distribution", [])
        if apps:
            table = Table(title="Apps")
            table.add_column("App", style="magenta")
            table.add_column("Memories", justify="right")
            for row in apps[:10]:
                table.add_row(row["app"], str(row["count"]))
            console.print(table)

    except httpx.ConnectError:
        console.print("[red]Cannot connect to daemon[/red]")
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")


@cli.command()
@click.pass_context
def status(ctx):
    """Check daemon status."""
    asyncio.run(check_status(ctx.obj["url"]))


async def check_status(url: str):
    """Check if daemon is running and get stats."""
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{url}/health", timeout=2.0)

            if response.status_code == 200:
                data = response.json()
                console.print("[green]✓ Daemon is running[/green]")
                console.print(f"\nVersion: {data.get('version', 'unknown')}")
                console.print(f"Uptime: {data.get('uptime', 'unknown')}")
                stats = data.get("stats", {})
                console.print(f"Searches: {stats.get('search_count', 0)}")
                console.print(f"Memory: {stats.get('memory_mb', 0):.1f} MB")

                store = (await client.get(f"{url}/stats", timeout=2.0)).json()
                console.print(f"Memories: {store.get('total_memories', 0)}")
                semantic = "on" if store.get("semantic_available") else "[yellow]off[/yellow]"
                console.print(f"Semantic search: {semantic}")
            else:
                console.print("[red]Daemon error[/red]")

    except httpx.ConnectError:
        console.print("[red]✗ Daemon is not running[/red]")
        console.print("Start with: [cyan]recall serve[/cyan]")
    except Exception as e:
        console.print(f"[red]Error checking status:[/red] {e}")


@cli.command()
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
def serve(config: Optional[str]):
    """Run the memrecall daemon in the foreground."""
    console.print("[cyan]Starting memrecall daemon...[/cyan]")

    # Import here so client commands stay light
    from ..daemon.main import main as daemon_main

    try:
        asyncio.run(daemon_main(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Daemon stopped by user[/yellow]")
    except Exception as e:
        console.print(f"[red]Daemon error:[/red] {e}")
        logger.exception("Daemon crashed")


@cli.command()
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
def reindex(config: Optional[str]):
    """Re-embed every stored memory into the vector index."""
    asyncio.run(reindex_vectors(config))


async def reindex_vectors(config_path: Optional[str]):
    from ..daemon.config import Config
    from ..daemon.indexers import NumpyVectorStore, SQLiteMemoryStore
    from ..daemon.main import build_embedder

    config = Config.load(Path(config_path) if config_path else None)
    embedder = build_embedder(config.embedding)
    if embedder is None:
        console.print("[red]No embedder available; check the embedding section of your config[/red]")
        return

    store = SQLiteMemoryStore(config.storage.sqlite_path)
    vectors = NumpyVectorStore(
        dim=getattr(embedder, "dim", None) or config.embedding.dim,
        path=config.storage.vector_path,
    )

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        console=console
    ) as progress:
        task = progress.add_task(description="Embedding memories...", total=None)
        count = await vectors.rebuild(
            store.iter_records(),
            embedder,
            progress=lambda n: progress.update(task, description=f"Embedded {n} memories..."),
        )

    console.print(f"[green]✓[/green] Indexed {count} memories into {config.storage.vector_path}")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
