"""
Kernel Layer

Table abstraction and its security machinery:
- Column allow-lists for every read and write
- Credential hashing and timing-resistant verification
- Engine-enforced append-only ledgers

Invariants:
- Validation failures are raised before a statement reaches the engine
- Identifiers are quoted by the dialect, values are always bound parameters
- Plaintext passwords and hashes never appear in logs or errors
"""

from pgtables.kernel.errors import (
    TableError,
    NotImplementedTableError,
    TableValidationError,
    DisallowedColumnError,
    EmptyPayloadError,
    UnauthorizedColumnAccessError,
    WeakSecretError,
    ImmutabilityViolationError,
    EngineError,
    ConnectionCancelledError,
    EngineRejectionError,
)
from pgtables.kernel.identity import PasswordHasher
from pgtables.kernel.tables import (
    TableBase,
    PaginationWindow,
    MutableTable,
    CredentialTable,
    LedgerTable,
    ledger_enforcement_ddl,
)

__all__ = [
    # Errors
    "TableError",
    "NotImplementedTableError",
    "TableValidationError",
    "DisallowedColumnError",
    "EmptyPayloadError",
    "UnauthorizedColumnAccessError",
    "WeakSecretError",
    "ImmutabilityViolationError",
    "EngineError",
    "ConnectionCancelledError",
    "EngineRejectionError",
    # Identity
    "PasswordHasher",
    # Tables
    "TableBase",
    "PaginationWindow",
    "MutableTable",
    "CredentialTable",
    "LedgerTable",
    "ledger_enforcement_ddl",
]
