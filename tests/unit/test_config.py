"""Unit tests for app/config.py: config file loading, validation, env overrides.

Covers:
  - missing config file → Config.defaults(), no exception
  - missing / unsupported version, invalid YAML, non-mapping → SystemExit(1)
  - section parsing: server, store, audit, credentials
  - invalid backend names, secret_hash_rounds, soft_delete, list_limit → SystemExit(1)
  - KEYLEDGER_CONFIG search path, KEYLEDGER_PORT / *_DB_PATH / KEY_PEPPER overrides
  - 0.0.0.0 binding → security warning
  - the pepper never appears in the Config repr
"""

from __future__ import annotations

import textwrap
from pathlib import Path
from unittest.mock import patch

import pytest

from app.config import (
    DEFAULT_AUDIT_DB_PATH,
    DEFAULT_KEYS_DB_PATH,
    SUPPORTED_VERSIONS,
    VALID_AUDIT_BACKENDS,
    VALID_STORE_BACKENDS,
    Config,
    load_config,
)

_MISSING = "/nonexistent/path/to/config.yaml"


@pytest.fixture(autouse=True)
def no_default_config_paths(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's ~/.keyledger/config.yaml out of the test run."""
    monkeypatch.setattr("app.config.DEFAULT_CONFIG_PATHS", [])


def _write(tmp_path: Path, body: str) -> str:
    config_file = tmp_path / "config.yaml"
    config_file.write_text(textwrap.dedent(body))
    return str(config_file)


# ─── Missing config file ──────────────────────────────────────────────────────


class TestMissingConfigFile:
    """Missing config file is NOT an error — returns defaults."""

    def test_nonexistent_path_returns_defaults(self) -> None:
        config = load_config(config_path=_MISSING)
        assert isinstance(config, Config)
        assert config.version == 1
        assert config.path is None

    def test_defaults(self) -> None:
        config = load_config(config_path=_MISSING)
        assert config.server.host == "127.0.0.1"
        assert config.server.port == 3000
        assert config.store.backend == "sqlite"
        assert config.store.path == DEFAULT_KEYS_DB_PATH
        assert config.audit.backend == "sqlite"
        assert config.audit.path == DEFAULT_AUDIT_DB_PATH
        assert config.credentials.secret_hash_rounds == 12
        assert config.credentials.soft_delete is False
        assert config.credentials.list_limit == 1000
        assert config.credentials.key_pepper == ""

    def test_env_overrides_apply_without_file(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KEYLEDGER_PORT", "8080")
        config = load_config(config_path=_MISSING)
        assert config.server.port == 8080


# ─── Startup refusal ──────────────────────────────────────────────────────────


class TestInvalidConfigFile:
    def test_missing_version(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        path = _write(tmp_path, "server:\n  port: 3001\n")
        with pytest.raises(SystemExit) as exc_info:
            load_config(config_path=path)
        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert "CONFIG ERROR" in err
        assert "version" in err.lower()

    def test_empty_file(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "")
        with pytest.raises(SystemExit) as exc_info:
            load_config(config_path=path)
        assert exc_info.value.code == 1

    @pytest.mark.parametrize("version", [0, 2, 99])
    def test_unsupported_version(self, tmp_path: Path, version: int) -> None:
        assert version not in SUPPORTED_VERSIONS
        path = _write(tmp_path, f"version: {version}\n")
        with pytest.raises(SystemExit) as exc_info:
            load_config(config_path=path)
        assert exc_info.value.code == 1

    def test_invalid_yaml(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        path = _write(tmp_path, "version: 1\nserver: [unclosed\n")
        with pytest.raises(SystemExit):
            load_config(config_path=path)
        assert "Failed to parse" in capsys.readouterr().err

    def test_non_mapping_document(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "- version\n- 1\n")
        with pytest.raises(SystemExit):
            load_config(config_path=path)

    def test_invalid_store_backend(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        path = _write(tmp_path, "version: 1\nstore:\n  backend: postgres\n")
        with pytest.raises(SystemExit):
            load_config(config_path=path)
        assert "store.backend" in capsys.readouterr().err

    def test_invalid_audit_backend(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "version: 1\naudit:\n  backend: supabase\n")
        with pytest.raises(SystemExit):
            load_config(config_path=path)

    @pytest.mark.parametrize("rounds", [3, 32, "twelve"])
    def test_invalid_secret_hash_rounds(self, tmp_path: Path, rounds: object) -> None:
        path = _write(tmp_path, f"version: 1\ncredentials:\n  secret_hash_rounds: {rounds}\n")
        with pytest.raises(SystemExit):
            load_config(config_path=path)

    @pytest.mark.parametrize("value", ['"false"', "'no'", "1", "yes please"])
    def test_non_boolean_soft_delete(self, tmp_path: Path, value: str) -> None:
        path = _write(tmp_path, f"version: 1\ncredentials:\n  soft_delete: {value}\n")
        with pytest.raises(SystemExit):
            load_config(config_path=path)

    @pytest.mark.parametrize("value", [0, -5, "ten", "true"])
    def test_invalid_list_limit(self, tmp_path: Path, value: object) -> None:
        path = _write(tmp_path, f"version: 1\ncredentials:\n  list_limit: {value}\n")
        with pytest.raises(SystemExit):
            load_config(config_path=path)

    def test_invalid_port_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KEYLEDGER_PORT", "not-a-port")
        with pytest.raises(SystemExit):
            load_config(config_path=_MISSING)


# ─── Section parsing ──────────────────────────────────────────────────────────


class TestConfigSections:
    def test_full_file(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            """\
            version: 1
            server:
              host: 127.0.0.1
              port: 4000
            store:
              backend: memory
              path: /tmp/k.db
            audit:
              backend: memory
            credentials:
              secret_hash_rounds: 10
              soft_delete: true
              list_limit: 25
            """,
        )
        config = load_config(config_path=path)
        assert config.path == path
        assert config.server.port == 4000
        assert config.store.backend == "memory"
        assert config.store.path == "/tmp/k.db"
        assert config.credentials.secret_hash_rounds == 10
        assert config.credentials.soft_delete is True
        assert config.credentials.list_limit == 25

    def test_yaml_null_audit_backend_is_rejected(self, tmp_path: Path) -> None:
        """Unquoted `null` parses to None in YAML, which is not a backend name."""
        path = _write(tmp_path, "version: 1\naudit:\n  backend: null\n")
        # audit: {backend: None} → not in VALID_AUDIT_BACKENDS
        with pytest.raises(SystemExit):
            load_config(config_path=path)

    def test_quoted_null_audit_backend(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "version: 1\naudit:\n  backend: 'null'\n")
        assert load_config(config_path=path).audit.backend == "null"

    def test_unknown_keys_ignored(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "version: 1\nscanner:\n  mode: full\n")
        assert load_config(config_path=path).version == 1

    def test_backend_sets(self) -> None:
        assert VALID_STORE_BACKENDS == {"sqlite", "memory"}
        assert VALID_AUDIT_BACKENDS == {"sqlite", "memory", "null"}


# ─── Search order + env overrides ─────────────────────────────────────────────


class TestSearchOrderAndOverrides:
    def test_keyledger_config_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _write(tmp_path, "version: 1\nserver:\n  port: 3999\n")
        monkeypatch.setenv("KEYLEDGER_CONFIG", path)
        config = load_config()
        assert config.path == path
        assert config.server.port == 3999

    def test_explicit_path_wins_over_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        env_file = tmp_path / "env.yaml"
        env_file.write_text("version: 1\nserver:\n  port: 1111\n")
        monkeypatch.setenv("KEYLEDGER_CONFIG", str(env_file))
        explicit = _write(tmp_path, "version: 1\nserver:\n  port: 2222\n")
        assert load_config(config_path=explicit).server.port == 2222

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = _write(tmp_path, "version: 1\nserver:\n  port: 3001\n")
        monkeypatch.setenv("KEYLEDGER_PORT", "3002")
        monkeypatch.setenv("KEYLEDGER_KEYS_DB_PATH", str(tmp_path / "k.db"))
        monkeypatch.setenv("KEYLEDGER_AUDIT_DB_PATH", str(tmp_path / "a.db"))
        monkeypatch.setenv("KEYLEDGER_KEY_PEPPER", "s3cret-pepper")
        config = load_config(config_path=path)
        assert config.server.port == 3002
        assert config.store.path == str(tmp_path / "k.db")
        assert config.audit.path == str(tmp_path / "a.db")
        assert config.credentials.key_pepper == "s3cret-pepper"

    def test_pepper_not_in_repr(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KEYLEDGER_KEY_PEPPER", "s3cret-pepper")
        config = load_config(config_path=_MISSING)
        assert "s3cret-pepper" not in repr(config)

    def test_pepper_in_file_is_ignored(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "version: 1\ncredentials:\n  key_pepper: from-file\n")
        assert load_config(config_path=path).credentials.key_pepper == ""

    def test_bind_all_interfaces_warns(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "version: 1\nserver:\n  host: 0.0.0.0\n")
        with patch("app.config.logger") as mock_logger:
            config = load_config(config_path=path)
        assert config.server.host == "0.0.0.0"
        warnings = [call.args[0] for call in mock_logger.warning.call_args_list]
        assert any("SECURITY WARNING" in message for message in warnings)
