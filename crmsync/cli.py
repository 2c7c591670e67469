"""CLI tools for CRM write job administration."""

from uuid import UUID

import click

from crmsync.core.config import settings
from crmsync.core.structured_logging import configure_logging
from crmsync.db.enums import CrmJobStatus
from crmsync.db.session import SessionLocal
from crmsync.services import crm_job_service


@click.group()
def cli():
    """CRM sync CLI tools."""
    configure_logging(settings.LOG_LEVEL)


@cli.command()
def worker():
    """
    Run the CRM job poller until interrupted.

    Example:
        crmsync worker
    """
    from crmsync.worker import main

    main()


@cli.command("list-jobs")
@click.option(
    "--status",
    type=click.Choice([s.value for s in CrmJobStatus]),
    default=None,
    help="Only jobs with this status",
)
@click.option("--form-id", type=click.UUID, default=None, help="Only jobs for this form")
@click.option("--page", default=1, show_default=True)
@click.option("--limit", default=30, show_default=True)
def list_jobs(status: str | None, form_id: UUID | None, page: int, limit: int):
    """
    List CRM write jobs, newest first.

    Example:
        crmsync list-jobs --status failed
    """
    with SessionLocal() as db:
        items, total = crm_job_service.list_jobs(
            db,
            status=CrmJobStatus(status) if status else None,
            form_id=form_id,
            page=page,
            limit=limit,
        )

    click.echo(f"{total} job(s)")
    for item in items:
        line = (
            f"{item.id}  {item.status:<9}  {item.retry_count}/{item.max_retries}  "
            f"{item.connection_name or '-'} ({item.backend_type or '-'})"
        )
        click.echo(line)
        if item.error_preview:
            click.echo(f"    {item.error_preview.splitlines()[0]}")


@cli.command()
def stats():
    """Show job counts per status."""
    with SessionLocal() as db:
        counts = crm_job_service.get_status_counts(db)
    for status, count in counts.model_dump().items():
        click.echo(f"{status:<10} {count}")


@cli.command()
@click.argument("job_id", type=click.UUID)
def retry(job_id: UUID):
    """
    Requeue a failed or cancelled job.

    A running worker picks it up on its next poll.

    Example:
        crmsync retry 2f1c...
    """
    with SessionLocal() as db:
        try:
            job = crm_job_service.retry_job(db, job_id)
        except crm_job_service.CrmJobServiceError as e:
            click.echo(f"❌ {e}")
            raise SystemExit(1)
        click.echo(f"✓ Job {job.id} requeued (retry {job.retry_count}/{job.max_retries})")


@cli.command()
@click.argument("job_id", type=click.UUID)
def cancel(job_id: UUID):
    """Cancel a pending job."""
    with SessionLocal() as db:
        try:
            job = crm_job_service.cancel_job(db, job_id)
        except crm_job_service.CrmJobServiceError as e:
            click.echo(f"❌ {e}")
            raise SystemExit(1)
        click.echo(f"✓ Job {job.id} cancelled")


@cli.command("create-jobs")
@click.argument("submission_id", type=click.UUID)
def create_jobs(submission_id: UUID):
    """
    Create CRM write jobs for a stored submission (one per active mapping).

    Example:
        crmsync create-jobs 8a4e...
    """
    with SessionLocal() as db:
        try:
            job_ids = crm_job_service.create_jobs_for_submission(db, submission_id)
        except crm_job_service.CrmJobServiceError as e:
            click.echo(f"❌ {e}")
            raise SystemExit(1)
    if not job_ids:
        click.echo("No active CRM mapping for this form; nothing queued")
        return
    for job_id in job_ids:
        click.echo(f"✓ Queued job {job_id}")


if __name__ == "__main__":
    cli()
