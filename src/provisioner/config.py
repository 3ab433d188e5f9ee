"""Configuration management with validation.

Provisioning constants that identify the fixed platform objects (the CI/CD
resource, the directory-graph API and its permission, the token audience) live
here next to the runtime configuration so every module reads them from one
place.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path


class LogFormat(str, Enum):
    """Supported console log formats."""

    JSON = "json"
    TEXT = "text"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Fixed platform identifiers
DEVOPS_RESOURCE_ID = "499b84ac-1321-427f-aa17-267ca6975798"
DEVOPS_TOKEN_SCOPE = f"{DEVOPS_RESOURCE_ID}/.default"
GRAPH_TOKEN_SCOPE = "https://graph.microsoft.com/.default"
ARM_TOKEN_SCOPE = "https://management.azure.com/.default"
ARM_ENDPOINT_URL = "https://management.azure.com/"

MS_GRAPH_API_ID = "00000003-0000-0000-c000-000000000000"
DIRECTORY_READ_ALL_ROLE_ID = "7ab1d382-f21e-4acd-a863-ba3e13f7da61"

FEDERATION_AUDIENCE = "api://AzureADTokenExchange"
FEDERATION_SCHEME = "WorkloadIdentityFederation"

ROLE_NAME = "Owner"

# Naming conventions
IDENTITY_NAME_TEMPLATE = "app-{subscription_name}-devops"
CONNECTION_NAME_TEMPLATE = "conn-{identity_name}"
SUBJECT_TEMPLATE = "sc://{org}/{project}/{connection_name}"

# Configuration constants with documented bounds
DEFAULT_ENTRIES_FILE = "provisioning.json"
DEFAULT_ADMIN_CONSENT_DELAY_SECONDS = 30
MIN_ADMIN_CONSENT_DELAY_SECONDS = 0
MAX_ADMIN_CONSENT_DELAY_SECONDS = 600

DEFAULT_GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
DEFAULT_DEVOPS_BASE_URL = "https://dev.azure.com"
DEFAULT_DEVOPS_API_VERSION = "7.1"

MAX_ENTRIES_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max entries file
MAX_ENTRIES = 500
MAX_FEDERATED_CREDENTIAL_NAME_LENGTH = 120

# Input validation patterns
VALID_GUID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_API_VERSION_PATTERN = r"^\d+\.\d+(-preview(\.\d+)?)?$"


@dataclass(frozen=True)
class Config:
    """Provisioning configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-run.
    """

    entries_file: Path = field(default_factory=lambda: Path(DEFAULT_ENTRIES_FILE))
    tenant_id: str | None = None

    # Timing
    admin_consent_delay_seconds: int = DEFAULT_ADMIN_CONSENT_DELAY_SECONDS

    # Platform endpoints
    graph_base_url: str = DEFAULT_GRAPH_BASE_URL
    devops_base_url: str = DEFAULT_DEVOPS_BASE_URL
    devops_api_version: str = DEFAULT_DEVOPS_API_VERSION

    # Output
    log_format: LogFormat = LogFormat.JSON
    report_file: Path | None = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if self.tenant_id and not re.match(VALID_GUID_PATTERN, self.tenant_id.lower()):
            errors.append(f"AZURE_TENANT_ID must be a valid GUID: {self.tenant_id}")

        if not (
            MIN_ADMIN_CONSENT_DELAY_SECONDS
            <= self.admin_consent_delay_seconds
            <= MAX_ADMIN_CONSENT_DELAY_SECONDS
        ):
            errors.append(
                f"ADMIN_CONSENT_DELAY must be between {MIN_ADMIN_CONSENT_DELAY_SECONDS} "
                f"and {MAX_ADMIN_CONSENT_DELAY_SECONDS} seconds"
            )

        for name, url in (
            ("GRAPH_BASE_URL", self.graph_base_url),
            ("DEVOPS_BASE_URL", self.devops_base_url),
        ):
            if not url.startswith("https://"):
                errors.append(f"{name} must be an https URL: {url}")

        if not re.match(VALID_API_VERSION_PATTERN, self.devops_api_version):
            errors.append(f"DEVOPS_API_VERSION is not a valid api-version: {self.devops_api_version}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def with_overrides(self, **overrides: object) -> Config:
        """Return a copy with non-None overrides applied (CLI flags win over env)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            PROVISIONING_FILE: Path to the entries file (default: provisioning.json)
            AZURE_TENANT_ID: Tenant to pin the CLI session to (optional)
            ADMIN_CONSENT_DELAY: Seconds to wait before admin consent (default: 30)
            GRAPH_BASE_URL: Directory graph base URL (default: https://graph.microsoft.com/v1.0)
            DEVOPS_BASE_URL: CI/CD platform base URL (default: https://dev.azure.com)
            DEVOPS_API_VERSION: CI/CD REST api-version (default: 7.1)
            LOG_FORMAT: json or text (default: json)
            REPORT_FILE: Write a JSON run report to this path (optional)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_log_format(value: str | None) -> LogFormat:
            if not value:
                return LogFormat.JSON
            try:
                return LogFormat(value.lower())
            except ValueError as e:
                valid = [f.value for f in LogFormat]
                raise ConfigurationError(f"LOG_FORMAT must be one of {valid}: {value}") from e

        report_file = os.environ.get("REPORT_FILE")

        return cls(
            entries_file=Path(os.environ.get("PROVISIONING_FILE", DEFAULT_ENTRIES_FILE)),
            tenant_id=os.environ.get("AZURE_TENANT_ID") or None,
            admin_consent_delay_seconds=get_int(
                "ADMIN_CONSENT_DELAY", DEFAULT_ADMIN_CONSENT_DELAY_SECONDS
            ),
            graph_base_url=os.environ.get("GRAPH_BASE_URL", DEFAULT_GRAPH_BASE_URL).rstrip("/"),
            devops_base_url=os.environ.get("DEVOPS_BASE_URL", DEFAULT_DEVOPS_BASE_URL).rstrip("/"),
            devops_api_version=os.environ.get("DEVOPS_API_VERSION", DEFAULT_DEVOPS_API_VERSION),
            log_format=get_log_format(os.environ.get("LOG_FORMAT")),
            report_file=Path(report_file) if report_file else None,
        )
