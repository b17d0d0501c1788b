"""
Table descriptor schema.
"""

from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

# PostgreSQL truncates identifiers beyond NAMEDATALEN - 1 bytes
MAX_IDENTIFIER_BYTES = 63


def check_identifier(value: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError("identifier must be a non-empty string")
    if "\x00" in value:
        raise ValueError("identifier must not contain NUL")
    if len(value.encode("utf-8")) > MAX_IDENTIFIER_BYTES:
        raise ValueError(f"identifier {value!r} exceeds {MAX_IDENTIFIER_BYTES} bytes")
    return value


class TableDescriptor(BaseModel):
    """Name and column allow-list of a table, fixed at construction."""

    model_config = ConfigDict(frozen=True)

    name: str
    visible_columns: Tuple[str, ...] = ()
    schema_name: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return check_identifier(v)

    @field_validator("schema_name")
    @classmethod
    def validate_schema_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return check_identifier(v)

    @field_validator("visible_columns")
    @classmethod
    def validate_visible_columns(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        seen = set()
        for column in v:
            check_identifier(column)
            if column in seen:
                raise ValueError(f"column {column!r} listed twice")
            seen.add(column)
        return v

    def allows(self, column: str) -> bool:
        return column in self.visible_columns
