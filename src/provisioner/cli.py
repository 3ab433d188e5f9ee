"""Federation provisioner CLI (fedprov).

Usage:
    fedprov provision provisioning.json     # Provision every entry
    fedprov validate provisioning.json      # Validate entries, no platform calls
    fedprov names Prod --org contoso --project infra   # Show derived names
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from .config import (
    MAX_ADMIN_CONSENT_DELAY_SECONDS,
    MIN_ADMIN_CONSENT_DELAY_SECONDS,
    Config,
    ConfigurationError,
    LogFormat,
)
from .entries import EntriesLoadError, load_entries
from .main import EXIT_PRECONDITION, run_provisioning, setup_logging
from .models import (
    connection_name,
    federated_credential_name,
    federation_subject,
    identity_display_name,
)


def echo_names(subscription_name: str, org: str = "", project: str = "") -> None:
    """Print the names derived for one subscription."""
    identity = identity_display_name(subscription_name)
    connection = connection_name(identity)
    click.echo(f"  identity:    {identity}")
    click.echo(f"  connection:  {connection}")
    if org and project:
        click.echo(f"  subject:     {federation_subject(org, project, connection)}")
        click.echo(f"  credential:  {federated_credential_name(org, project, connection)}")


@click.group()
def cli() -> None:
    """Provision federated workload identities and service connections."""
    pass


@cli.command()
@click.argument("entries_file", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--consent-delay",
    type=click.IntRange(MIN_ADMIN_CONSENT_DELAY_SECONDS, MAX_ADMIN_CONSENT_DELAY_SECONDS),
    default=None,
    help="Seconds to wait before requesting admin consent",
)
@click.option(
    "--log-format",
    type=click.Choice([f.value for f in LogFormat]),
    default=None,
    help="Console log format",
)
@click.option(
    "--report-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write a JSON run report to this file",
)
@click.option("--tenant", "tenant_id", default=None, help="Tenant id for the CLI session")
def provision(
    entries_file: Path | None,
    consent_delay: int | None,
    log_format: str | None,
    report_file: Path | None,
    tenant_id: str | None,
) -> None:
    """Provision every entry in ENTRIES_FILE (default: $PROVISIONING_FILE)."""
    try:
        config = Config.from_env().with_overrides(
            entries_file=entries_file,
            admin_consent_delay_seconds=consent_delay,
            log_format=LogFormat(log_format) if log_format else None,
            report_file=report_file,
            tenant_id=tenant_id,
        )
    except ConfigurationError as e:
        click.secho(str(e), fg="red", err=True)
        sys.exit(EXIT_PRECONDITION)

    setup_logging(config.log_format)
    sys.exit(run_provisioning(config))


@cli.command()
@click.argument("entries_file", type=click.Path(dir_okay=False, path_type=Path))
def validate(entries_file: Path) -> None:
    """Validate ENTRIES_FILE without contacting any platform."""
    try:
        results = load_entries(entries_file)
    except EntriesLoadError as e:
        raise click.ClickException(str(e)) from e

    invalid = 0
    for result in results:
        if result.entry is None:
            invalid += 1
            click.secho(f"✗ [{result.index}] {result.label}: {result.error}", fg="red")
            continue

        entry = result.entry
        click.secho(f"✓ [{result.index}] {entry.subscription_name}", fg="green")
        if entry.create_service_connection:
            echo_names(entry.subscription_name, entry.org_name, entry.project_name)
        else:
            echo_names(entry.subscription_name)

    click.echo(f"\n{len(results) - invalid} valid, {invalid} invalid")
    if invalid:
        sys.exit(EXIT_PRECONDITION)


@cli.command()
@click.argument("subscription_name")
@click.option("--org", default="", help="Organization name")
@click.option("--project", default="", help="Project name")
def names(subscription_name: str, org: str, project: str) -> None:
    """Show the names derived for SUBSCRIPTION_NAME."""
    if bool(org) != bool(project):
        raise click.UsageError("--org and --project must be given together")
    click.echo(subscription_name)
    echo_names(subscription_name, org, project)


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
