"""
Configuration tests.

Verifies:
- The packaged defaults parse into the documented configuration
- Resolution order: explicit path, $PERIOD_KERNEL_CONFIG, packaged defaults
- $DATABASE_URL overrides database.url
- Unknown sections, unknown keys and invalid values are rejected
- The checksum identifies the effective configuration
"""

from pathlib import Path

import pytest
import yaml

from period_config import DEFAULTS_FILE, get_active_config
from period_config.loader import load_config, parse_config
from period_config.schema import ArchiveMode, ArchiveSinkKind, KernelConfig


def _write(tmp_path: Path, data: dict, name: str = "kernel.yaml") -> Path:
    path = tmp_path / name
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:

    def test_packaged_defaults(self):
        config = get_active_config(environ={})

        assert config.source == str(DEFAULTS_FILE)
        assert config.archive.mode == ArchiveMode.EXPORT_THEN_DELETE
        assert config.archive.sink == ArchiveSinkKind.FILE
        assert config.archive.allow_delete_without_export is False
        assert config.archive.auto_archive_on_new_year is True
        assert config.rollover.record_kinds == ("purchase",)
        assert config.locking.use_advisory_locks is True
        assert config.logging.level == "INFO"

    def test_defaults_file_matches_dataclass_defaults(self):
        from_file = load_config(DEFAULTS_FILE)
        from_empty = parse_config({})

        assert from_file.checksum == from_empty.checksum

    def test_empty_document(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        config = get_active_config(path, environ={})

        assert config.database == KernelConfig().database


class TestResolution:

    def test_explicit_path_wins(self, tmp_path):
        explicit = _write(tmp_path, {"logging": {"level": "debug"}}, "explicit.yaml")
        from_env = _write(tmp_path, {"logging": {"level": "error"}}, "env.yaml")

        config = get_active_config(explicit, environ={"PERIOD_KERNEL_CONFIG": str(from_env)})

        assert config.logging.level == "DEBUG"
        assert config.source == str(explicit)

    def test_env_var_path(self, tmp_path):
        from_env = _write(tmp_path, {"archive": {"sink": "table"}})

        config = get_active_config(environ={"PERIOD_KERNEL_CONFIG": str(from_env)})

        assert config.archive.sink == ArchiveSinkKind.TABLE

    def test_database_url_override(self, tmp_path):
        path = _write(tmp_path, {"database": {"url": "sqlite:///a.db", "pool_size": 5}})

        config = get_active_config(
            path, environ={"DATABASE_URL": "postgresql://u:p@db/period_kernel"}
        )

        assert config.database.url == "postgresql://u:p@db/period_kernel"
        assert config.database.pool_size == 5

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "nope.yaml", environ={})

    def test_config_loaded_is_logged(self, tmp_path, captured_logs):
        path = _write(tmp_path, {"archive": {"mode": "delete_only",
                                             "allow_delete_without_export": True}})

        config = get_active_config(path, environ={})

        (entry,) = [r for r in captured_logs() if r["message"] == "config_loaded"]
        assert entry["source"] == str(path)
        assert entry["checksum"] == config.checksum
        assert entry["archive_mode"] == "delete_only"
        assert entry["database_url_from_env"] is False


class TestValidation:

    @pytest.mark.parametrize("data, message", [
        ({"metrics": {}}, "Unknown configuration sections"),
        ({"archive": {"compress": True}}, "archive: unknown keys"),
        ({"archive": {"mode": "shred"}}, "archive.mode"),
        ({"archive": {"sink": "s3"}}, "archive.sink"),
        ({"archive": {"allow_delete_without_export": "yes"}}, "must be true or false"),
        ({"rollover": {"record_kinds": ["purchase", "payroll"]}}, "unknown record kinds"),
        ({"rollover": {"record_kinds": "purchase"}}, "must be a list"),
        ({"logging": {"level": "LOUD"}}, "logging.level"),
        ({"locking": {"archive_timeout_seconds": 0}}, "positive number"),
        ({"database": {"pool_size": -1}}, "positive number"),
        ({"database": {"url": ""}}, "database.url"),
        ({"database": ["url"]}, "must be a mapping"),
    ])
    def test_invalid_values(self, data, message):
        with pytest.raises(ValueError, match=message):
            parse_config(data)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="top level must be a mapping"):
            get_active_config(path, environ={})

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("archive: [unclosed\n")

        with pytest.raises(yaml.YAMLError):
            get_active_config(path, environ={})


class TestChecksum:

    def test_same_content_same_checksum(self):
        data = {"archive": {"sink": "table"}, "rollover": {"record_kinds": ["purchase"]}}

        assert parse_config(data).checksum == parse_config(dict(reversed(data.items()))).checksum

    def test_different_content_different_checksum(self):
        assert (
            parse_config({"archive": {"sink": "table"}}).checksum
            != parse_config({"archive": {"sink": "file"}}).checksum
        )

    def test_config_is_frozen(self):
        config = parse_config({})

        with pytest.raises(AttributeError):
            config.archive = None
