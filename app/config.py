"""Config loading for keyledger.

Reads `.keyledger/config.yaml` (or `~/.keyledger/config.yaml`).
Raises SystemExit on parse errors or missing `version` field.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. KEYLEDGER_CONFIG environment variable (if set)
  3. `.keyledger/config.yaml` (working directory — for development)
  4. `~/.keyledger/config.yaml` (home directory — for production deployments)

Environment variable overrides (applied after the file):
  KEYLEDGER_PORT           — overrides server.port
  KEYLEDGER_KEYS_DB_PATH   — overrides store.path
  KEYLEDGER_AUDIT_DB_PATH  — overrides audit.path
  KEYLEDGER_KEY_PEPPER     — server-side secret mixed into verification hashes
                             (env only; never read from the file, never logged)
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import NoReturn, Optional

import yaml

from app.constants import (
    DEFAULT_LIST_LIMIT,
    DEFAULT_SECRET_HASH_ROUNDS,
    MAX_SECRET_HASH_ROUNDS,
    MIN_SECRET_HASH_ROUNDS,
)
from app.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# ─── Validation sets ─────────────────────────────────────────────────────────

VALID_STORE_BACKENDS: frozenset[str] = frozenset({"sqlite", "memory"})
VALID_AUDIT_BACKENDS: frozenset[str] = frozenset({"sqlite", "memory", "null"})

DEFAULT_CONFIG_PATHS = [
    ".keyledger/config.yaml",
    os.path.expanduser("~/.keyledger/config.yaml"),
]

DEFAULT_KEYS_DB_PATH = "~/.keyledger/keys.db"
DEFAULT_AUDIT_DB_PATH = "~/.keyledger/audit.db"


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class ServerConfig:
    """HTTP binding configuration."""

    host: str = "127.0.0.1"
    port: int = 3000


@dataclass
class StoreConfig:
    """Credential store + rotation ledger configuration."""

    backend: str = "sqlite"  # "sqlite" | "memory"
    path: str = DEFAULT_KEYS_DB_PATH


@dataclass
class AuditConfig:
    """Audit backend configuration."""

    backend: str = "sqlite"  # "sqlite" | "memory" | "null"
    path: str = DEFAULT_AUDIT_DB_PATH


@dataclass
class CredentialsConfig:
    """Lifecycle policy knobs."""

    secret_hash_rounds: int = DEFAULT_SECRET_HASH_ROUNDS
    soft_delete: bool = False      # deactivate instead of delete on rotate/revoke
    list_limit: int = DEFAULT_LIST_LIMIT
    key_pepper: str = field(default="", repr=False)


@dataclass
class Config:
    """Root configuration object populated from .keyledger/config.yaml.

    All fields have safe defaults — keyledger can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    server: ServerConfig = field(default_factory=ServerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Raises:
            SystemExit(1): On an unknown backend name, an out-of-range
                           credentials.secret_hash_rounds or list_limit, or a
                           non-boolean credentials.soft_delete.
        """
        # ── Store ─────────────────────────────────────────────────────────────
        store_raw = raw.get("store") or {}
        store = StoreConfig(
            backend=store_raw.get("backend", "sqlite"),
            path=store_raw.get("path", DEFAULT_KEYS_DB_PATH),
        )
        if store.backend not in VALID_STORE_BACKENDS:
            _config_error(
                f"Invalid store.backend: '{store.backend}'. "
                f"Supported values: {sorted(VALID_STORE_BACKENDS)}."
            )

        # ── Audit ─────────────────────────────────────────────────────────────
        audit_raw = raw.get("audit") or {}
        audit = AuditConfig(
            backend=audit_raw.get("backend", "sqlite"),
            path=audit_raw.get("path", DEFAULT_AUDIT_DB_PATH),
        )
        if audit.backend not in VALID_AUDIT_BACKENDS:
            _config_error(
                f"Invalid audit.backend: '{audit.backend}'. "
                f"Supported values: {sorted(VALID_AUDIT_BACKENDS)}."
            )

        # ── Credentials ───────────────────────────────────────────────────────
        creds_raw = raw.get("credentials") or {}
        rounds = creds_raw.get("secret_hash_rounds", DEFAULT_SECRET_HASH_ROUNDS)
        if not isinstance(rounds, int) or not (
            MIN_SECRET_HASH_ROUNDS <= rounds <= MAX_SECRET_HASH_ROUNDS
        ):
            _config_error(
                f"Invalid credentials.secret_hash_rounds: {rounds!r}. "
                f"Must be an integer between {MIN_SECRET_HASH_ROUNDS} and "
                f"{MAX_SECRET_HASH_ROUNDS}."
            )
        soft_delete = creds_raw.get("soft_delete", False)
        if not isinstance(soft_delete, bool):
            _config_error(
                f"Invalid credentials.soft_delete: {soft_delete!r}. "
                "Must be true or false (unquoted)."
            )
        list_limit = creds_raw.get("list_limit", DEFAULT_LIST_LIMIT)
        if isinstance(list_limit, bool) or not isinstance(list_limit, int) or list_limit < 1:
            _config_error(
                f"Invalid credentials.list_limit: {list_limit!r}. "
                "Must be a positive integer."
            )
        credentials = CredentialsConfig(
            secret_hash_rounds=rounds,
            soft_delete=soft_delete,
            list_limit=list_limit,
        )

        # ── Server ────────────────────────────────────────────────────────────
        server_raw = raw.get("server") or {}
        server = ServerConfig(
            host=server_raw.get("host", "127.0.0.1"),
            port=server_raw.get("port", 3000),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            server=server,
            store=store,
            audit=audit,
            credentials=credentials,
            path=path,
        )


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate keyledger configuration.

    If no file is found at any search path, returns default Config (not an error).
    If a file is found but invalid, writes error to stderr and raises SystemExit(1).
    Environment overrides are applied in both cases.

    Raises:
        SystemExit(1): On YAML parse error, non-mapping document, missing or
                       unsupported ``version``, invalid backend, invalid
                       credentials values, or invalid ``KEYLEDGER_PORT``.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("KEYLEDGER_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _config_error(
            f"Failed to parse {found_path}: {exc}\n"
            "keyledger refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _config_error(f"Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _config_error(
                f"{found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _config_error(
            f"{found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _config_error(
            f"{found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _config_error(
            f"Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)

    if config.server.host == "0.0.0.0":
        logger.warning(
            "SECURITY WARNING: keyledger is configured to bind on 0.0.0.0 (all interfaces). "
            "Key generation and deletion are unauthenticated; "
            "recommended: server.host: '127.0.0.1' behind a trusted proxy."
        )

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        store_backend=config.store.backend,
        audit_backend=config.audit.backend,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Raises:
        SystemExit(1): If KEYLEDGER_PORT is set but not a valid integer.
    """
    env_port = os.environ.get("KEYLEDGER_PORT")
    if env_port is not None:
        try:
            config.server.port = int(env_port)
        except ValueError:
            _config_error(
                f"KEYLEDGER_PORT environment variable is not a valid integer: '{env_port}'"
            )

    env_keys_db = os.environ.get("KEYLEDGER_KEYS_DB_PATH")
    if env_keys_db:
        config.store.path = env_keys_db

    env_audit_db = os.environ.get("KEYLEDGER_AUDIT_DB_PATH")
    if env_audit_db:
        config.audit.path = env_audit_db

    config.credentials.key_pepper = os.environ.get("KEYLEDGER_KEY_PEPPER", "")


def _config_error(message: str) -> NoReturn:
    print(f"CONFIG ERROR: {message}", file=sys.stderr)
    raise SystemExit(1)
