"""
Pydantic schemas.
"""

from pgtables.schemas.table import TableDescriptor

__all__ = ["TableDescriptor"]
