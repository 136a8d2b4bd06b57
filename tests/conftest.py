"""
Shared test fixtures.

Every test runs against InMemoryDocumentStore; nothing touches Firestore.
"""

import pytest

from ledger_core.audit import AuditLogger
from ledger_core.models.ledger import AdminWhitelistEntry
from ledger_core.orchestrator import LedgerEngine
from ledger_core.services.storage import InMemoryDocumentStore

ADMIN_PHONE = "+91 9161293962"
ADMIN_PHONE_NORMALIZED = "919161293962"
ADMIN_NAME = "Vaibhav"


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def whitelist():
    return [AdminWhitelistEntry(phone_number=ADMIN_PHONE, admin_name=ADMIN_NAME)]


@pytest.fixture
def engine(store, whitelist):
    return LedgerEngine(store, admin_whitelist=whitelist, audit_logger=AuditLogger(store))


@pytest.fixture
def admin_ledger(engine):
    """Coroutine factory: bootstrap the whitelisted admin, return its ledger id."""
    async def _bootstrap() -> str:
        session = await engine.resolve_session(ADMIN_PHONE)
        return session.ledger_id
    return _bootstrap
