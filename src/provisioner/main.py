"""Run entry point for the federation provisioner.

SECRETLESS ARCHITECTURE:
- The run authenticates with the operator's existing Azure CLI session only
- Secret-bearing credential variables in the environment abort the run
- Every identity it provisions is bound through federation, never a secret

Exit codes:
    0  every entry succeeded
    1  precondition failure (configuration, entries file, no session)
    2  secretless violation
    3  at least one entry failed
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from azure.core.credentials import TokenCredential

from .config import Config, ConfigurationError, LogFormat
from .credentials import (
    SecretlessViolationError,
    SessionError,
    enforce_secretless_environment,
    get_session_credential,
    verify_session,
)
from .entries import EntriesLoadError, load_entries
from .orchestrator import Provisioner, RunReport

EXIT_OK = 0
EXIT_PRECONDITION = 1
EXIT_SECRETLESS_VIOLATION = 2
EXIT_ENTRIES_FAILED = 3

LOG_HANDLER_NAME = "provisioner"
TEXT_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)

ProvisionerFactory = Callable[[Config, TokenCredential], Provisioner]


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_format: LogFormat = LogFormat.JSON) -> None:
    """Configure console logging (JSON for pipelines, text for terminals)."""
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(LOG_HANDLER_NAME)
    if log_format == LogFormat.JSON:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_LOG_FORMAT))

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if existing.get_name() == LOG_HANDLER_NAME:
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def write_report(report: RunReport, path: Path) -> None:
    """Write the run report as JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.to_dict(), indent=2) + "\n", encoding="utf-8")


def run_provisioning(
    config: Config,
    *,
    credential: TokenCredential | None = None,
    provisioner_factory: ProvisionerFactory | None = None,
) -> int:
    """Run the provisioning workflow for every entry in the configured file.

    Args:
        config: Validated configuration.
        credential: Session credential (defaults to the Azure CLI session).
        provisioner_factory: Builds the Provisioner (defaults to real clients).

    Returns:
        Process exit code.
    """
    logger = logging.getLogger(__name__)

    try:
        enforce_secretless_environment()
    except SecretlessViolationError as e:
        # SECURITY: Credential detected in environment - fatal security error
        logger.critical(
            "Security violation: credentials detected in environment",
            extra={"error": str(e)},
        )
        return EXIT_SECRETLESS_VIOLATION

    try:
        load_results = load_entries(config.entries_file)
    except EntriesLoadError as e:
        logger.error("Entries file loading failed", extra={"error": str(e)})
        return EXIT_PRECONDITION

    try:
        if credential is None:
            credential = get_session_credential(config.tenant_id)
        verify_session(credential)
    except SessionError as e:
        logger.error("No authenticated session", extra={"error": str(e)})
        return EXIT_PRECONDITION

    logger.info(
        "Starting federation provisioning",
        extra={
            "entries_file": str(config.entries_file),
            "entries": len(load_results),
            "admin_consent_delay_seconds": config.admin_consent_delay_seconds,
        },
    )

    factory = provisioner_factory or Provisioner.from_credential
    report = factory(config, credential).run(load_results)

    if config.report_file is not None:
        try:
            write_report(report, config.report_file)
            logger.info(f"Run report written to {config.report_file}")
        except OSError as e:
            logger.error(
                "Failed to write run report",
                extra={"error": str(e), "report_file": str(config.report_file)},
            )

    return EXIT_OK if report.success else EXIT_ENTRIES_FAILED


def main() -> int:
    """Run with configuration from the environment only."""
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return EXIT_PRECONDITION

    setup_logging(config.log_format)
    return run_provisioning(config)


def run() -> None:
    """Entry point for ``python -m``-style invocation."""
    sys.exit(main())


if __name__ == "__main__":
    run()
