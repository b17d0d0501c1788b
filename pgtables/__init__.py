"""
pgtables - secure table access layer for PostgreSQL.
"""

from pgtables.database import PgApp, create_engine_from_settings
from pgtables.kernel import (
    CredentialTable,
    LedgerTable,
    MutableTable,
)

__version__ = "0.1.0"

__all__ = [
    "PgApp",
    "create_engine_from_settings",
    "MutableTable",
    "CredentialTable",
    "LedgerTable",
]
