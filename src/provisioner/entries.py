"""Provisioning entry loading with validation.

File-level problems abort the whole run. Each entry is validated on its own
so one malformed element does not prevent the others from being provisioned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_ENTRIES, MAX_ENTRIES_FILE_SIZE_BYTES
from .models import ProvisioningEntry

logger = logging.getLogger(__name__)


class EntriesLoadError(Exception):
    """Raised when the entries file cannot be loaded at all."""

    pass


@dataclass(frozen=True)
class EntryLoadResult:
    """Outcome of validating one element of the entries file."""

    index: int
    entry: ProvisioningEntry | None = None
    error: str | None = None
    raw: Any = None

    @property
    def valid(self) -> bool:
        return self.entry is not None

    @property
    def label(self) -> str:
        """Best-effort name for reporting, even when validation failed."""
        if self.entry is not None:
            return self.entry.subscription_name
        if isinstance(self.raw, dict):
            name = self.raw.get("SubscriptionName") or self.raw.get("subscription_name")
            if isinstance(name, str) and name.strip():
                return name.strip()
        return f"entry[{self.index}]"


def format_validation_error(error: ValidationError) -> str:
    """Flatten pydantic errors into one readable line per problem."""
    lines = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"])
        msg = item["msg"]
        lines.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(lines)


def validate_entry(index: int, raw: Any) -> EntryLoadResult:
    """Validate a single raw element into a ProvisioningEntry."""
    if not isinstance(raw, dict):
        return EntryLoadResult(
            index=index,
            error=f"entry must be a mapping, got {type(raw).__name__}",
            raw=raw,
        )
    try:
        entry = ProvisioningEntry.model_validate(raw)
    except ValidationError as e:
        return EntryLoadResult(index=index, error=format_validation_error(e), raw=raw)
    return EntryLoadResult(index=index, entry=entry, raw=raw)


def _extract_entries(raw_data: Any, path: Path) -> list[Any]:
    # Supported shapes: a bare list, {"entries": [...]}, or a
    # Kubernetes-style wrapper with apiVersion/spec.entries
    if isinstance(raw_data, list):
        return raw_data

    if isinstance(raw_data, dict):
        if "apiVersion" in raw_data and "spec" in raw_data:
            raw_data = raw_data.get("spec")
            if not isinstance(raw_data, dict):
                raise EntriesLoadError(f"'spec' section must be a mapping: {path}")
        entries = raw_data.get("entries")
        if isinstance(entries, list):
            return entries

    raise EntriesLoadError(
        f"Entries file must contain a list of entries or an 'entries' list: {path}"
    )


def load_entries(path: Path) -> list[EntryLoadResult]:
    """Load and validate provisioning entries from JSON or YAML.

    Args:
        path: Entries file. JSON is parsed by the YAML loader (JSON is a YAML subset).

    Returns:
        One EntryLoadResult per element, in file order.

    Raises:
        EntriesLoadError: If the file cannot be read or has the wrong shape.
    """
    if not path.exists():
        raise EntriesLoadError(f"Entries file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise EntriesLoadError(f"Failed to stat entries file {path}: {e}") from e

    if file_size > MAX_ENTRIES_FILE_SIZE_BYTES:
        raise EntriesLoadError(
            f"Entries file exceeds maximum size of {MAX_ENTRIES_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8-sig")
    except OSError as e:
        raise EntriesLoadError(f"Failed to read entries file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise EntriesLoadError(f"Invalid JSON/YAML in {path}: {e}") from e

    raw_entries = _extract_entries(raw_data, path)

    if not raw_entries:
        raise EntriesLoadError(f"Entries file contains no entries: {path}")
    if len(raw_entries) > MAX_ENTRIES:
        raise EntriesLoadError(f"Entries file exceeds maximum of {MAX_ENTRIES} entries: {path}")

    results = [validate_entry(index, raw) for index, raw in enumerate(raw_entries)]

    invalid = [r for r in results if not r.valid]
    for result in invalid:
        logger.error(
            f"Invalid entry '{result.label}': {result.error}",
            extra={"entry_index": result.index},
        )
    logger.info(f"Loaded {len(results)} entries from {path} ({len(invalid)} invalid)")
    return results
