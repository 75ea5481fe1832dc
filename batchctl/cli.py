"""CLI interface for batchctl."""

import asyncio
import click
import json
import logging
import sys
from datetime import datetime
from typing import Optional
from .app import AppContext
from .config import Settings
from .events import EventType, JobEvent
from .models import Job, JobStatus
from .storage import JobArchive


def get_archive(settings: Settings) -> JobArchive:
    return JobArchive(settings.data_dir)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """batchctl - Rate-limited batch job runner"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = Settings()


def _echo_event(event: JobEvent) -> None:
    data = event.data
    if event.type == EventType.JOB_STARTED:
        click.echo(f"▶ Job {event.job_id} started ({data.get('total', 0)} items)")
    elif event.type == EventType.ITEM_SUCCEEDED:
        click.echo(f"  ✓ {data['item_id']} (attempts: {data['attempts']})")
    elif event.type == EventType.ITEM_FAILED:
        click.echo(f"  ✗ {data['item_id']} (attempts: {data['attempts']}): {data['error']}")
    elif event.type == EventType.JOB_PROGRESS:
        click.echo(f"  {data['processed']}/{data['total']} processed ({data['progress'] * 100:.1f}%)")
    elif event.type == EventType.JOB_FAILED:
        click.echo(f"✗ Job {event.job_id} failed: {data['error']}", err=True)


async def _run_job(settings: Settings, items: list, command: str, options: dict, rate_limited: bool) -> Job:
    async with AppContext(settings, archive=get_archive(settings)) as app:
        app.reporter.subscribe(_echo_event)
        worker = app.command_worker(command, rate_limited=rate_limited)
        job_id = app.scheduler.submit(items, worker, options, job_type="command")
        return await app.scheduler.wait(job_id)


@cli.command()
@click.argument("items_file", type=click.File("r"))
@click.option("--command", "-c", "command", required=True, help="Shell command template, e.g. 'extract {id}'")
@click.option("--batch-size", type=int, help="Items per batch")
@click.option("--max-concurrent", type=int, help="Concurrent items within a batch")
@click.option("--retries", type=int, help="Attempts per item")
@click.option("--rate-limited/--direct", default=True, help="Route commands through the rate-limited queue")
@click.option("--timeout", type=float, help="Per-command timeout in seconds")
@click.pass_obj
def run(
    settings: Settings,
    items_file,
    command: str,
    batch_size: Optional[int],
    max_concurrent: Optional[int],
    retries: Optional[int],
    rate_limited: bool,
    timeout: Optional[float],
):
    """Run a command for every item of a JSON list.

    Example:
        batchctl run contracts.json --command 'extract --contract {id}'
    """
    try:
        items = json.load(items_file)
    except json.JSONDecodeError as e:
        click.echo(f"✗ Invalid JSON: {e}", err=True)
        sys.exit(1)
    if not isinstance(items, list):
        click.echo("✗ Items file must contain a JSON list", err=True)
        sys.exit(1)

    if timeout is not None:
        settings.command_timeout = timeout
    options = {
        key: value
        for key, value in {
            "batch_size": batch_size,
            "max_concurrent": max_concurrent,
            "item_retry_attempts": retries,
        }.items()
        if value is not None
    }

    try:
        job = asyncio.run(_run_job(settings, items, command, options, rate_limited))
    except Exception as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)

    _print_job(job)
    if job.status == JobStatus.FAILED:
        sys.exit(1)


def _print_job(job: Job) -> None:
    click.echo("\n" + "=" * 50)
    click.echo(f"Job {job.id}")
    click.echo("=" * 50)
    click.echo(f"Status:       {job.status.value}")
    click.echo(f"Type:         {job.type}")
    click.echo(f"Total Items:  {job.total_items}")
    click.echo(f"  Processed:  {job.processed_items}")
    click.echo(f"  Succeeded:  {job.succeeded_items}")
    click.echo(f"  Failed:     {job.failed_items}")
    if job.summary:
        click.echo(f"Duration:     {job.summary.duration:.2f}s")
        click.echo(f"Throughput:   {job.summary.throughput:.2f} items/s")
    if job.error:
        click.echo(f"Error:        {job.error}")
    if job.errors:
        click.echo("\nFailed items:")
        for error in job.errors:
            click.echo(f"  {error.item_id:<20} attempts={error.attempts:<3} {error.error_message[:60]}")
    click.echo("=" * 50 + "\n")


@cli.command()
@click.pass_obj
def status(settings: Settings):
    """Show archived job statistics.

    Example:
        batchctl status
    """
    stats = get_archive(settings).get_stats()

    click.echo("\n" + "=" * 50)
    click.echo("batchctl Status")
    click.echo("=" * 50)
    click.echo(f"Total Jobs:     {stats['total']}")
    click.echo(f"  Completed:    {stats['completed']}")
    click.echo(f"  Failed:       {stats['failed']}")
    click.echo(f"  Cancelled:    {stats['cancelled']}")
    click.echo(f"Items:          {stats['items']}")
    click.echo(f"  Succeeded:    {stats['items_succeeded']}")
    click.echo(f"  Failed:       {stats['items_failed']}")
    click.echo("=" * 50 + "\n")


@cli.command()
@click.option(
    "--status", "status_filter",
    type=click.Choice([s.value for s in JobStatus], case_sensitive=False),
    help="Filter by status",
)
@click.option("--limit", default=10, help="Maximum jobs to display")
@click.pass_obj
def history(settings: Settings, status_filter: Optional[str], limit: int):
    """List archived jobs, most recent first.

    Example:
        batchctl history --status COMPLETED --limit 20
    """
    archive = get_archive(settings)
    jobs = archive.get_jobs(JobStatus(status_filter.upper()) if status_filter else None)
    jobs = jobs[::-1][:limit]

    if not jobs:
        click.echo("No jobs found")
        return

    click.echo(f"\n{'ID':<32} {'Status':<10} {'Done':<10} {'Failed':<8} {'Started':<20}")
    click.echo("-" * 82)
    for job in jobs:
        started = job.start_time.strftime("%Y-%m-%d %H:%M:%S") if isinstance(job.start_time, datetime) else str(job.start_time)
        done = f"{job.processed_items}/{job.total_items}"
        click.echo(f"{job.id:<32} {job.status.value:<10} {done:<10} {job.failed_items:<8} {started:<20}")
    click.echo()


@cli.command()
@click.argument("job_id")
@click.pass_obj
def show(settings: Settings, job_id: str):
    """Show one archived job.

    Example:
        batchctl show job_1760000000000_abc123def
    """
    job = get_archive(settings).get_job(job_id)
    if job is None:
        click.echo(f"✗ Job {job_id} not found", err=True)
        sys.exit(1)
    _print_job(job)


@cli.group()
def config():
    """Inspect configuration"""
    pass


@config.command("show")
@click.pass_obj
def show_config(settings: Settings):
    """Show current configuration.

    Values come from BATCHCTL_* environment variables.

    Example:
        batchctl config show
    """
    click.echo("\nCurrent Configuration:")
    for key, value in settings.model_dump().items():
        click.echo(f"  {key.replace('_', '-'):<24} {value}")
    click.echo()


if __name__ == "__main__":
    cli()
