"""
quietcrawl command line interface.

Usage:
    quietcrawl crawl https://example.com --max-pages 20
    quietcrawl audit https://example.com --output results/audit.json
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .core.config import ConfigError, CrawlRequest, Settings, load_settings
from .core.logging import configure_logging
from .core.pipeline import AuditPipeline


console = Console()


def _load(config_path: Optional[str], log_level: Optional[str]) -> Settings:
    try:
        settings = load_settings(config_path)
    except (ConfigError, ValidationError) as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(2)

    configure_logging(
        level=log_level or settings.logging.level,
        json_output=settings.logging.json_output,
    )
    return settings


def _apply_overrides(
    settings: Settings,
    max_depth: Optional[int],
    max_time: Optional[int],
    no_robots: bool,
    no_sitemap: bool,
    headless: bool,
) -> Settings:
    crawl_updates = {}
    if max_depth is not None:
        crawl_updates["max_depth"] = max_depth
    if max_time is not None:
        crawl_updates["max_time_ms"] = max_time * 1000
    if no_robots:
        crawl_updates["respect_robots_txt"] = False
    if no_sitemap:
        crawl_updates["use_sitemap"] = False

    return settings.model_copy(update={
        "crawl": settings.crawl.model_copy(update=crawl_updates),
        "renderer": settings.renderer.model_copy(update={"headless": headless}),
    })


def _validate_request(url: str, max_pages: Optional[int], include_subdomains: bool, settings: Settings) -> CrawlRequest:
    try:
        request = CrawlRequest(
            url=url,
            max_pages=max_pages or settings.crawl.max_pages_default,
            include_subdomains=include_subdomains,
        )
    except ValidationError as e:
        console.print(f"[bold red]Invalid request:[/bold red] {e.errors()[0]['msg']}")
        sys.exit(2)

    if request.max_pages > settings.crawl.max_pages_limit:
        console.print(
            f"[bold red]Invalid request:[/bold red] max pages is limited to {settings.crawl.max_pages_limit}"
        )
        sys.exit(2)
    return request


def _save(results: dict, output: str):
    output_path = Path(output)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w') as f:
        json.dump(results, f, indent=2)

    console.print(f"\n[green]Results saved to:[/green] {output_path}")


def _print_crawl_tables(crawl_result):
    table = Table(title="Crawl Result")
    table.add_column("Outcome", style="cyan", no_wrap=True)
    table.add_column("Count", style="green", justify="right")
    table.add_row("Visited", str(len(crawl_result.visited_urls)))
    table.add_row("Discovered, not visited", str(len(crawl_result.unvisited_urls)))
    table.add_row("Failed", str(len(crawl_result.failed_urls)))
    table.add_row("Stopped by", crawl_result.stop_reason.value)
    table.add_row("Duration", f"{crawl_result.duration_ms / 1000:.1f}s")
    console.print(table)

    if crawl_result.failed_urls:
        failed = Table(title="Failed URLs")
        failed.add_column("URL", style="yellow")
        failed.add_column("Kind", style="red")
        failed.add_column("Retries", justify="right")
        failed.add_column("Reason")
        for entry in crawl_result.failed_urls:
            failed.add_row(entry.url, entry.kind.value, str(entry.retry_count), entry.reason[:80])
        console.print(failed)


crawl_options = [
    click.option('--max-pages', type=int, help='Maximum pages to visit (default from config: 50)'),
    click.option('--max-depth', type=int, help='Maximum link depth (default: 3)'),
    click.option('--max-time', type=int, help='Wall-clock budget in seconds (default: 120)'),
    click.option('--include-subdomains', is_flag=True, help='Follow links to sibling subdomains'),
    click.option('--no-robots', is_flag=True, help='Ignore robots.txt'),
    click.option('--no-sitemap', is_flag=True, help='Do not seed from sitemap.xml'),
    click.option('--headless/--no-headless', default=True, help='Run browser in headless mode'),
    click.option('--config', 'config_path', type=click.Path(exists=True, dir_okay=False), help='YAML configuration file'),
    click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False)),
    click.option('--output', type=click.Path(), help='Save results to JSON file'),
]


def with_crawl_options(func):
    for option in reversed(crawl_options):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="quietcrawl")
def cli():
    """
    quietcrawl - Budgeted site crawler with page stabilization.

    Crawls a site breadth-first and waits for each page to go quiet.
    """
    pass


@cli.command()
@click.argument('url')
@with_crawl_options
def crawl(url, max_pages, max_depth, max_time, include_subdomains, no_robots, no_sitemap, headless, config_path, log_level, output):
    """
    Crawl a site and report visited, unvisited and failed URLs.

    Example:
        quietcrawl crawl https://example.com --max-pages 20 --max-depth 2
    """
    settings = _load(config_path, log_level)
    settings = _apply_overrides(settings, max_depth, max_time, no_robots, no_sitemap, headless)
    request = _validate_request(url, max_pages, include_subdomains, settings)

    pipeline = AuditPipeline(
        target=request.url,
        settings=settings,
        max_pages=request.max_pages,
        include_subdomains=request.include_subdomains,
        analyze_pages=False,
    )
    _run(pipeline, output, "Crawling")


@cli.command()
@click.argument('url')
@with_crawl_options
@click.option('--concurrency', type=click.IntRange(1, 10), help='Pages analyzed in parallel (default: 3)')
def audit(url, max_pages, max_depth, max_time, include_subdomains, no_robots, no_sitemap, headless, config_path, log_level, output, concurrency):
    """
    Crawl a site, then re-open every visited page and analyze it once quiet.

    Example:
        quietcrawl audit https://example.com --output results/audit.json
    """
    settings = _load(config_path, log_level)
    settings = _apply_overrides(settings, max_depth, max_time, no_robots, no_sitemap, headless)
    if concurrency is not None:
        settings = settings.model_copy(update={"audit": settings.audit.model_copy(update={"concurrency": concurrency})})
    request = _validate_request(url, max_pages, include_subdomains, settings)

    pipeline = AuditPipeline(
        target=request.url,
        settings=settings,
        max_pages=request.max_pages,
        include_subdomains=request.include_subdomains,
    )
    _run(pipeline, output, "Auditing")


def _run(pipeline: AuditPipeline, output: Optional[str], label: str):
    console.print("\n" + "=" * 80)
    console.print("quietcrawl")
    console.print("=" * 80 + "\n")
    console.print(f"[green]Target:[/green] {pipeline.target}")
    console.print(f"[green]Max Pages:[/green] {pipeline.max_pages}")
    console.print(f"[green]Max Depth:[/green] {pipeline.settings.crawl.max_depth}")
    console.print(f"[green]Robots.txt:[/green] {'respected' if pipeline.settings.crawl.respect_robots_txt else '[dim]ignored[/dim]'}")
    console.print()

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task(f"[cyan]{label}...", total=None)

            def on_event(event, data):
                if event == "page_visited":
                    progress.update(task, description=f"[cyan]{label}: {data['url']}")

            pipeline.subscribe(on_event)
            run = asyncio.run(pipeline.run())
            progress.update(task, description=f"[green]{label} complete!")

        console.print()
        _print_crawl_tables(run.crawl)
        if pipeline.analyze_pages:
            console.print(pipeline.get_summary())

        if output:
            _save(pipeline.get_results(), output)

    except KeyboardInterrupt:
        console.print("\n\n[yellow]Interrupted by user[/yellow]")
        sys.exit(1)

    except Exception as e:
        console.print(f"\n[bold red]Error during run:[/bold red] {e}")
        console.print_exception()
        sys.exit(1)


@cli.command()
def version():
    """Show version information and components"""
    console.print(f"\n[bold cyan]quietcrawl v{__version__}[/bold cyan]")
    console.print("[cyan]Budgeted crawling with page stabilization[/cyan]\n")

    table = Table(title="Components")
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Notes", style="yellow")

    table.add_row("Frontier Scheduler", "BFS under page/depth/time budgets")
    table.add_row("Robots Policy", "Disallow rules and Crawl-delay")
    table.add_row("Sitemap Seeder", "sitemap.xml and sitemap indexes")
    table.add_row("Stabilization Detector", "Network + DOM quiet detection")
    table.add_row("Rate Limiter", "Adaptive politeness delay")

    console.print(table)
    console.print()


if __name__ == '__main__':
    cli()
