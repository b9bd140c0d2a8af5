"""Code system catalogue model and per-mapping code tag tables."""

import re

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column

from acm_gateway.core.config import settings
from acm_gateway.models.base import Base, TimestampMixin

# Column set of every code tag backing table, in document order
CODETAG_COLUMNS = (
    "tagkey",
    "observationtype",
    "datatype",
    "encode",
    "parameterlabel",
    "encodesystem",
    "subid",
    "description",
    "source",
    "mds",
    "mdsid",
    "vmd",
    "vmdid",
    "channel",
    "channelid",
)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Backing tables are created on demand, so they live outside Base.metadata
codetag_metadata = MetaData()


class CodeSystem(Base, TimestampMixin):
    """Catalogue entry for one named code system mapping."""

    __tablename__ = settings.codesystem_table

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    table_name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    xml: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<CodeSystem(name={self.name}, table={self.table_name})>"


def is_valid_identifier(name: str | None) -> bool:
    """Check that a name is safe to use as an SQL table name."""
    return bool(name) and _IDENTIFIER_RE.match(name) is not None


def codetag_table(name: str) -> Table:
    """Get the Core table object for a code tag backing table.

    Raises:
        ValueError: If the name is not a plain SQL identifier.
    """
    if not is_valid_identifier(name):
        raise ValueError(f"Invalid code tag table name: {name!r}")

    existing = codetag_metadata.tables.get(name)
    if existing is not None:
        return existing

    return Table(
        name,
        codetag_metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        *(Column(column, Text) for column in CODETAG_COLUMNS),
    )
