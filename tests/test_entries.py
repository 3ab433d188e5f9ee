"""Tests for entries file loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from provisioner.config import MAX_ENTRIES
from provisioner.entries import EntriesLoadError, load_entries, validate_entry

DEV = {"SubscriptionName": "Dev", "CreateServiceConnection": "false"}
PROD = {
    "SubscriptionName": "Prod",
    "CreateServiceConnection": "true",
    "OrgName": "contoso",
    "ProjectName": "infra",
}


class TestLoadEntries:
    """Tests for load_entries."""

    def test_json_list(self, tmp_path: Path) -> None:
        path = tmp_path / "provisioning.json"
        path.write_text(json.dumps([DEV, PROD]))

        results = load_entries(path)

        assert [r.entry.subscription_name for r in results if r.entry] == ["Dev", "Prod"]
        assert all(r.valid for r in results)

    def test_json_with_bom(self, tmp_path: Path) -> None:
        """Test that files saved with a UTF-8 BOM load."""
        path = tmp_path / "provisioning.json"
        path.write_bytes(b"\xef\xbb\xbf" + json.dumps([DEV]).encode("utf-8"))

        results = load_entries(path)

        assert results[0].valid

    def test_yaml_entries_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "provisioning.yaml"
        path.write_text(yaml.safe_dump({"entries": [DEV]}))

        results = load_entries(path)

        assert len(results) == 1
        assert results[0].entry is not None

    def test_wrapped_document(self, tmp_path: Path) -> None:
        path = tmp_path / "provisioning.yaml"
        path.write_text(
            yaml.safe_dump({"apiVersion": "v1", "kind": "Provisioning", "spec": {"entries": [PROD]}})
        )

        results = load_entries(path)

        assert results[0].entry is not None
        assert results[0].entry.org_name == "contoso"

    def test_invalid_entry_does_not_block_siblings(self, tmp_path: Path) -> None:
        """Test that each entry is validated on its own."""
        path = tmp_path / "provisioning.json"
        path.write_text(json.dumps([{"SubscriptionName": "Broken"}, DEV]))

        results = load_entries(path)

        assert not results[0].valid
        assert results[0].label == "Broken"
        assert "CreateServiceConnection" in (results[0].error or "")
        assert results[1].valid

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(EntriesLoadError) as exc_info:
            load_entries(tmp_path / "missing.json")
        assert "not found" in str(exc_info.value)

    def test_unparsable_file(self, tmp_path: Path) -> None:
        path = tmp_path / "provisioning.json"
        path.write_text("[{unclosed")

        with pytest.raises(EntriesLoadError):
            load_entries(path)

    def test_wrong_shape(self, tmp_path: Path) -> None:
        path = tmp_path / "provisioning.json"
        path.write_text(json.dumps({"SubscriptionName": "Dev"}))

        with pytest.raises(EntriesLoadError) as exc_info:
            load_entries(path)
        assert "list of entries" in str(exc_info.value)

    def test_empty_list(self, tmp_path: Path) -> None:
        path = tmp_path / "provisioning.json"
        path.write_text("[]")

        with pytest.raises(EntriesLoadError) as exc_info:
            load_entries(path)
        assert "no entries" in str(exc_info.value)

    def test_too_many_entries(self, tmp_path: Path) -> None:
        path = tmp_path / "provisioning.json"
        path.write_text(json.dumps([DEV] * (MAX_ENTRIES + 1)))

        with pytest.raises(EntriesLoadError) as exc_info:
            load_entries(path)
        assert "maximum" in str(exc_info.value)


class TestValidateEntry:
    """Tests for single-entry validation."""

    def test_non_mapping_entry(self) -> None:
        result = validate_entry(3, "Dev")

        assert not result.valid
        assert result.label == "entry[3]"
        assert "mapping" in (result.error or "")

    def test_error_is_readable(self) -> None:
        result = validate_entry(0, {"SubscriptionName": "Prod", "CreateServiceConnection": True})

        assert result.error is not None
        assert "OrgName and ProjectName required" in result.error
