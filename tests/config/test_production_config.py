"""Tests for loading and validating production configuration sets."""

from __future__ import annotations

import textwrap

import pytest
import yaml

from production_config import get_active_config
from production_config.loader import compute_checksum, load_config, parse_config
from production_config.schema import (
    IdentifierPolicy,
    QuantityPolicy,
    ReadPolicy,
    RollbackPolicy,
)


def write_set(tmp_path, body: str):
    path = tmp_path / "set.yaml"
    path.write_text(textwrap.dedent(body))
    return path


class TestDefaultSet:
    def test_shipped_set_matches_schema_defaults(self):
        config = get_active_config()

        assert config.config_id == "default"
        assert config.quantities == QuantityPolicy()
        assert config.identifiers == IdentifierPolicy()
        assert config.rollback == RollbackPolicy()
        assert config.reads == ReadPolicy()
        assert "certification" in config.outputs.required_attributes

    def test_checksum_is_stable(self):
        assert get_active_config().checksum == get_active_config().checksum
        assert len(get_active_config().checksum) == 64

    def test_load_is_logged(self, captured_logs):
        get_active_config()

        loaded = [r for r in captured_logs() if r["message"] == "production_config_loaded"]
        assert loaded and loaded[0]["config_id"] == "default"


class TestLoadFromFile:
    def test_partial_set_fills_defaults(self, tmp_path):
        path = write_set(
            tmp_path,
            """
            config_id: mill-b
            version: 3
            identifiers:
              prefix: M
              inherit_code_processes: [Sorting, Grading]
            rollback:
              max_attempts: 5
            """,
        )

        config = load_config(path)

        assert config.config_id == "mill-b"
        assert config.version == 3
        assert config.identifiers.prefix == "M"
        assert config.identifiers.width == 4
        assert config.identifiers.inherit_code_processes == ("sorting", "grading")
        assert config.rollback.max_attempts == 5
        assert config.rollback.backoff_seconds == RollbackPolicy().backoff_seconds

    def test_checksum_follows_content(self, tmp_path):
        first = load_config(write_set(tmp_path, "version: 1\n"))
        second = load_config(write_set(tmp_path, "version: 2\n"))

        assert first.checksum != second.checksum
        assert first.checksum == compute_checksum({"version": 1})

    def test_empty_file_is_all_defaults(self, tmp_path):
        config = load_config(write_set(tmp_path, ""))

        assert config.identifiers == IdentifierPolicy()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_malformed_yaml(self, tmp_path):
        with pytest.raises(yaml.YAMLError):
            load_config(write_set(tmp_path, "identifiers: [unclosed\n"))


class TestValidation:
    def test_unknown_key_is_rejected(self):
        with pytest.raises(ValueError, match="backof"):
            parse_config({"rollback": {"backof_seconds": 1}})

    def test_section_must_be_mapping(self):
        with pytest.raises(ValueError, match="mapping"):
            parse_config({"reads": [4]})

    @pytest.mark.parametrize(
        "data",
        [
            {"quantities": {"volume_places": 12}},
            {"identifiers": {"max_number": 99999, "width": 4}},
            {"identifiers": {"prefix": ""}},
            {"rollback": {"max_attempts": 0}},
            {"rollback": {"backoff_seconds": -1}},
            {"reads": {"fanout_workers": 0}},
        ],
    )
    def test_out_of_range_values(self, data):
        with pytest.raises(ValueError):
            parse_config(data)
