"""
Ledger engine components.

IdentityDirectory, TransactionStore, AggregateMaintainer and
RecipientLifecycle each own one concern and share nothing but the store.
LedgerEngine (ledger_core.orchestrator) wires them together.
"""

from ledger_core.ledger.aggregates import (
    AggregateMaintainer,
    summarize_by_recipient,
    summarize_transactions,
)
from ledger_core.ledger.identity import IdentityDirectory
from ledger_core.ledger.recipients import (
    ACCESS_CODE_ALPHABET,
    RecipientLifecycle,
    generate_access_code,
)
from ledger_core.ledger.transactions import (
    TransactionStore,
    load_transactions,
    parse_direction,
)

__all__ = [
    "ACCESS_CODE_ALPHABET",
    "AggregateMaintainer",
    "IdentityDirectory",
    "RecipientLifecycle",
    "TransactionStore",
    "generate_access_code",
    "load_transactions",
    "parse_direction",
    "summarize_by_recipient",
    "summarize_transactions",
]
