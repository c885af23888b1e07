"""Root test configuration for keyledger.

Strips KEYLEDGER_* environment variables for every test so that a
developer's shell cannot leak config into the suite, and provides an
in-memory lifecycle service with bcrypt rounds lowered to the minimum.
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from app.audit.memory_backend import InMemoryAuditBackend
from app.credentials.memory_backend import InMemoryCredentialStore, InMemoryRotationLedger
from app.credentials.service import CredentialLifecycleService

TEST_PEPPER = "test-pepper"
TEST_HASH_ROUNDS = 4

_KEYLEDGER_ENV_VARS = (
    "KEYLEDGER_CONFIG",
    "KEYLEDGER_PORT",
    "KEYLEDGER_KEYS_DB_PATH",
    "KEYLEDGER_AUDIT_DB_PATH",
    "KEYLEDGER_KEY_PEPPER",
)


@pytest.fixture(autouse=True)
def clean_keyledger_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove keyledger env overrides for the duration of each test."""
    for name in _KEYLEDGER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def ledger() -> InMemoryRotationLedger:
    return InMemoryRotationLedger()


@pytest.fixture
def audit() -> InMemoryAuditBackend:
    return InMemoryAuditBackend()


@pytest.fixture
def make_service(
    store: InMemoryCredentialStore,
    ledger: InMemoryRotationLedger,
    audit: InMemoryAuditBackend,
) -> Callable[..., CredentialLifecycleService]:
    """Factory: a service over the shared in-memory fixtures, options overridable."""

    def _make(**kwargs: Any) -> CredentialLifecycleService:
        options: dict[str, Any] = {
            "key_pepper": TEST_PEPPER,
            "secret_hash_rounds": TEST_HASH_ROUNDS,
        }
        options.update(kwargs)
        return CredentialLifecycleService(store, ledger, audit, **options)

    return _make


@pytest.fixture
def service(make_service: Callable[..., CredentialLifecycleService]) -> CredentialLifecycleService:
    return make_service()


@pytest.fixture
def pepper() -> str:
    """The key pepper used by make_service() unless overridden."""
    return TEST_PEPPER
