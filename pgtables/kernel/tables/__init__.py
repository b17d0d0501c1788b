"""
Table variants: mutable, credential and append-only ledger.
"""

from pgtables.kernel.tables.base import PaginationWindow, Row, RowStore, TableBase
from pgtables.kernel.tables.mutable import MutableTable
from pgtables.kernel.tables.auth import CredentialTable
from pgtables.kernel.tables.ledger import LedgerTable, ledger_enforcement_ddl

__all__ = [
    "TableBase",
    "PaginationWindow",
    "Row",
    "RowStore",
    "MutableTable",
    "CredentialTable",
    "LedgerTable",
    "ledger_enforcement_ddl",
]
