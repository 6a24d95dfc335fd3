"""Hash namespace table."""

from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class HashEntry(SQLModel, table=True):
    """One field of a named hash, e.g. ("assets:sta_status", "AA:BB:..")."""

    namespace: str = Field(primary_key=True)
    key: str = Field(primary_key=True)
    value: str  # JSON text
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
