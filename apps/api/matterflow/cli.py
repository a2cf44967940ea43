"""CLI tools for running scheduled jobs by hand."""

import json

import anyio
import click

from matterflow.core.config import settings
from matterflow.core.structured_logging import configure_logging
from matterflow.db.session import SessionLocal
from matterflow.jobs.context import JobContext
from matterflow.jobs.registry import JOB_HANDLERS, resolve_job_handler
from matterflow.services.clio_client import ClioClient
from matterflow.services.token_service import ClioTokenService


@click.group()
def cli():
    """matterflow CLI tools."""
    configure_logging(settings.LOG_LEVEL)


@cli.command("run-job")
@click.argument("name", type=click.Choice(sorted(JOB_HANDLERS)))
def run_job(name: str):
    """
    Run one scheduled job now and print its result.

    Example:
        python -m matterflow.cli run-job refresh_token
    """
    handler = resolve_job_handler(name)

    async def _run():
        tokens = ClioTokenService(SessionLocal, app_settings=settings)
        clio = ClioClient(tokens, app_settings=settings)
        try:
            return await handler(
                JobContext(session_factory=SessionLocal, clio=clio, tokens=tokens, settings=settings)
            )
        finally:
            await clio.aclose()

    result = anyio.run(_run)
    click.echo(json.dumps(result, indent=2, default=str))
    if not result.get("success"):
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
