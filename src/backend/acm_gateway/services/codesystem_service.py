"""Code table registry for HL7 observation and alarm codes.

Holds the active code system in memory, indexed by encode, and keeps it
consistent with its backing table. Lookups are synchronous and safe to
call from any connection task; bootstrap and upsert are serialized.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping
import asyncio
import re
import threading

import defusedxml.ElementTree as ET
import structlog
from defusedxml import DefusedXmlException
from sqlalchemy import func, insert, inspect, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from acm_gateway.core.metrics import set_codetags_loaded
from acm_gateway.integrations.base import LoadError, StoreError
from acm_gateway.models.codesystem import CodeSystem, codetag_table, is_valid_identifier

logger = structlog.get_logger()

_MAPPING_NAME_RE = re.compile(r"^[A-Za-z0-9_]+$")


class CodesystemError(Exception):
    """Code system mapping errors."""
    pass


# CodeTag attribute -> backing table column
_TAG_COLUMNS: dict[str, str] = {
    "tagkey": "tagkey",
    "observation_type": "observationtype",
    "data_type": "datatype",
    "encode": "encode",
    "parameter_label": "parameterlabel",
    "encode_system": "encodesystem",
    "sub_id": "subid",
    "description": "description",
    "source": "source",
    "mds": "mds",
    "mds_id": "mdsid",
    "vmd": "vmd",
    "vmd_id": "vmdid",
    "channel": "channel",
    "channel_id": "channelid",
}


def _text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return _text(value[0]) if value else None
    return str(value)


@dataclass
class CodeTag:
    """One code system entry. Encodes repeat and are told apart by sub_id."""
    tagkey: str | None = None
    observation_type: str | None = None
    data_type: str | None = None
    encode: str | None = None
    parameter_label: str | None = None
    encode_system: str | None = None
    sub_id: str | None = None
    description: str | None = None
    source: str | None = None
    mds: str | None = None
    mds_id: str | None = None
    vmd: str | None = None
    vmd_id: str | None = None
    channel: str | None = None
    channel_id: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CodeTag":
        """Build a tag from a mapping keyed by backing table column names."""
        return cls(**{attr: _text(row.get(column)) for attr, column in _TAG_COLUMNS.items()})

    def to_row(self) -> dict[str, str | None]:
        """Return the tag keyed by backing table column names."""
        return {column: getattr(self, attr) for attr, column in _TAG_COLUMNS.items()}


@dataclass
class CodesystemMapping:
    """A named code system and the table that backs it."""
    name: str
    table_name: str
    tags: list[CodeTag] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class BootstrapStatus(str, Enum):
    """How a bootstrap populated the registry."""
    LOADED = "loaded"      # Tags taken from the document
    RELOADED = "reloaded"  # Backing table already had data and won


@dataclass
class BootstrapResult:
    """Result of a registry bootstrap."""
    status: BootstrapStatus
    name: str
    table_name: str
    tag_count: int
    message: str


def parse_codesystem_document(document: str | bytes) -> list[CodeTag]:
    """
    Parse a code system XML document into tags.

    Every ``tag`` child of the root becomes one CodeTag. Attributes and
    child elements both supply values; a child repeated several times
    contributes only its first occurrence.

    Raises:
        LoadError: If the document is not well-formed XML or has no tags
    """
    if isinstance(document, bytes):
        document = document.decode("utf-8", errors="replace")
    document = document.replace("\ufeff", "")

    try:
        root = ET.fromstring(document.encode("utf-8"))
    except (ET.ParseError, DefusedXmlException) as e:
        raise LoadError(f"Malformed code system document: {e}", original_error=e) from e

    elements = root.findall("tag")
    if not elements:
        raise LoadError('No "tag" element found in code system document')

    tags = []
    for element in elements:
        values: dict[str, str] = {key.lower(): value for key, value in element.attrib.items()}
        for child in element:
            key = child.tag.lower()
            if key not in values:
                values[key] = child.text or ""
        tags.append(CodeTag.from_row(values))

    return tags


def mapping_name_from_filename(path: str | Path) -> str:
    """Derive the mapping name from a ``<name>_map.xml`` file name."""
    filename = Path(path).name
    index = filename.rfind("_map")
    return filename[:index].strip() if index > 0 else ""


def _build_index(tags: list[CodeTag]) -> dict[str, list[CodeTag]]:
    index: dict[str, list[CodeTag]] = {}
    for tag in tags:
        if tag.encode is None:
            continue
        index.setdefault(tag.encode.strip(), []).append(tag)
    return index


class CodeTableRegistry:
    """
    In-memory code system index backed by the database.

    Lookups return the first tag in insertion order whose encode (and
    sub_id, when given) matches.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        default_table: str = "hl7_codesystem_300",
        default_name: str = "300",
    ):
        self.session_factory = session_factory
        self.default_table = default_table
        self.default_name = default_name

        self._tags: list[CodeTag] = []
        self._index: dict[str, list[CodeTag]] = {}
        self._mappings: dict[str, CodesystemMapping] = {}
        self._active_name: str | None = None

        self._read_lock = threading.Lock()
        self._write_lock = asyncio.Lock()

    # ==================== Lookups ====================

    @property
    def active_name(self) -> str | None:
        return self._active_name

    @property
    def tag_count(self) -> int:
        with self._read_lock:
            return len(self._tags)

    def get_tags(self) -> list[CodeTag]:
        """Snapshot of the active tags in insertion order."""
        with self._read_lock:
            return list(self._tags)

    def get_mapping(self, name: str) -> CodesystemMapping | None:
        with self._read_lock:
            return self._mappings.get(name)

    def lookup(self, encode: str | None, sub_id: str | None = None) -> CodeTag | None:
        """Find the first tag matching an encode and, if given, a sub_id."""
        if encode is None:
            return None

        with self._read_lock:
            bucket = self._index.get(encode, [])

        for tag in bucket:
            if not sub_id or tag.sub_id == sub_id:
                return tag
        return None

    def describe(self, encode: str | None, sub_id: str | None = None) -> str | None:
        tag = self.lookup(encode, sub_id)
        return tag.description if tag else None

    def observation_type(self, encode: str | None, sub_id: str | None = None) -> str | None:
        tag = self.lookup(encode, sub_id)
        return tag.observation_type if tag else None

    def source_channel(self, encode: str | None, sub_id: str | None) -> str | None:
        """Get "source/channel" for an encode; requires a sub_id."""
        if not sub_id:
            return None
        tag = self.lookup(encode, sub_id)
        if tag is None:
            return None
        return f"{tag.source or ''}/{tag.channel or ''}"

    # ==================== Bootstrap ====================

    async def bootstrap_file(self, path: str | Path) -> BootstrapResult:
        """Bootstrap from a ``<name>_map.xml`` file."""
        path = Path(path)
        name = mapping_name_from_filename(path)
        if not name:
            raise LoadError(f"Invalid mapping name for code system file {path.name}")

        try:
            document = path.read_bytes()
        except OSError as e:
            raise LoadError(f"Cannot read code system file {path}: {e}", original_error=e) from e

        return await self.bootstrap(document, name=name, filename=path.name)

    async def bootstrap(
        self,
        document: str | bytes,
        name: str | None = None,
        filename: str | None = None,
    ) -> BootstrapResult:
        """
        Load a code system document and make it the active index.

        If the mapping's backing table already holds rows, the table wins:
        the document is only recorded in the catalogue and the index is
        rebuilt from the table.

        Raises:
            LoadError: If the document cannot be parsed or the mapping name
                does not yield a valid table name
            StoreError: If the database cannot be read or written
        """
        name = name or self.default_name
        document_text = document.decode("utf-8", errors="replace") if isinstance(document, bytes) else document
        tags = parse_codesystem_document(document_text)

        async with self._write_lock:
            table_name = await self._table_name_for_bootstrap(name)
            if not is_valid_identifier(table_name):
                raise LoadError(f"Invalid table name for mapping '{name}': {table_name}")
            await self._record_document(name, filename or f"{name}_map.xml", table_name, document_text)

            if await self._has_rows(table_name):
                stored = await self._load_rows(table_name)
                self._install(name, table_name, stored)
                logger.info(
                    "Code system reloaded from database",
                    name=name,
                    table=table_name,
                    tags=len(stored),
                )
                return BootstrapResult(
                    status=BootstrapStatus.RELOADED,
                    name=name,
                    table_name=table_name,
                    tag_count=len(stored),
                    message=f"Mapping '{name}' already exists; reloaded from database.",
                )

            self._install(name, table_name, tags)
            inserted = await self._upsert(table_name, tags, force_update=False, refresh_index=False)
            logger.info(
                "Code system loaded from document",
                name=name,
                table=table_name,
                tags=len(tags),
                inserted=inserted,
            )
            return BootstrapResult(
                status=BootstrapStatus.LOADED,
                name=name,
                table_name=table_name,
                tag_count=len(tags),
                message=f"Mapping '{name}' loaded with {len(tags)} tags.",
            )

    def _install(self, name: str, table_name: str, tags: list[CodeTag]) -> None:
        """Swap in a fully built index for the given mapping."""
        index = _build_index(tags)
        now = datetime.now(timezone.utc)

        with self._read_lock:
            mapping = self._mappings.get(name)
            if mapping is None:
                mapping = CodesystemMapping(name=name, table_name=table_name, created_at=now)
                self._mappings[name] = mapping
            mapping.table_name = table_name
            mapping.tags = tags
            mapping.updated_at = now

            self._tags = tags
            self._index = index
            self._active_name = name

        set_codetags_loaded(len(tags))

    # ==================== Upsert ====================

    async def upsert(self, table_name: str, tags: list[CodeTag], force_update: bool = True) -> int:
        """
        Insert or update tags in a backing table, keyed on tagkey.

        Existing rows are only updated when ``force_update`` is set. Each
        row is committed on its own, so a failure leaves earlier rows in
        place. Afterwards the description of matching in-memory tags
        (same encode and sub_id) is refreshed.

        Returns:
            Number of rows inserted or updated

        Raises:
            CodesystemError: If the table name is not a valid identifier
            StoreError: If a database operation fails
        """
        async with self._write_lock:
            return await self._upsert(table_name, tags, force_update)

    async def _upsert(
        self,
        table_name: str,
        tags: list[CodeTag],
        force_update: bool,
        refresh_index: bool = True,
    ) -> int:
        if not is_valid_identifier(table_name):
            raise CodesystemError(f"Invalid table name: {table_name}")

        table = codetag_table(table_name)
        affected = 0

        try:
            async with self.session_factory() as session:
                conn = await session.connection()
                await conn.run_sync(table.create, checkfirst=True)
                await session.commit()

                for tag in tags:
                    row = tag.to_row()
                    # Tags without a tagkey have no identity to match on
                    if tag.tagkey is None:
                        await session.execute(insert(table).values(**row))
                        affected += 1
                        await session.commit()
                        continue

                    existing = await session.execute(
                        select(table.c.id).where(table.c.tagkey == tag.tagkey).limit(1)
                    )
                    if existing.first() is not None:
                        if not force_update:
                            continue
                        values = {k: v for k, v in row.items() if k != "tagkey"}
                        result = await session.execute(
                            update(table).where(table.c.tagkey == tag.tagkey).values(**values)
                        )
                        affected += result.rowcount
                    else:
                        await session.execute(insert(table).values(**row))
                        affected += 1
                    await session.commit()
        except SQLAlchemyError as e:
            logger.error("Code tag upsert failed", table=table_name, error=str(e))
            raise StoreError(f"Failed to upsert code tags into {table_name}", original_error=e) from e

        if refresh_index:
            self._refresh_descriptions(tags)
        self._touch_mapping(table_name)

        logger.info("Code tags upserted", table=table_name, affected=affected)
        return affected

    def _refresh_descriptions(self, tags: list[CodeTag]) -> None:
        # Only the description is patched in the active index
        with self._read_lock:
            for tag in tags:
                if tag.encode is None:
                    continue
                for current in self._index.get(tag.encode.strip(), []):
                    if current.encode == tag.encode and current.sub_id == tag.sub_id:
                        current.description = tag.description
                        break

    def _touch_mapping(self, table_name: str) -> None:
        now = datetime.now(timezone.utc)
        with self._read_lock:
            for mapping in self._mappings.values():
                if mapping.table_name == table_name:
                    mapping.updated_at = now

    # ==================== Catalogue ====================

    async def table_name_for(self, name: str | None) -> str:
        """Get the backing table of a mapping; the default table if unknown."""
        if not name:
            return self.default_table

        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(CodeSystem.table_name).where(CodeSystem.name == name)
                )
                table_name = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to look up code system {name}", original_error=e) from e

        return table_name or self.default_table

    async def _table_name_for_bootstrap(self, name: str) -> str:
        if name == self.default_name:
            return self.default_table
        table_name = await self.table_name_for(name)
        if table_name == self.default_table:
            return f"hl7_codesystem_{name}"
        return table_name

    async def list_mappings(self) -> list[CodeSystem]:
        """Get all catalogue entries ordered by name."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(CodeSystem).order_by(CodeSystem.name))
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError("Failed to list code systems", original_error=e) from e

    async def create_mapping(self, name: str, tags: list[CodeTag] | None = None) -> CodesystemMapping:
        """
        Create a new named mapping with its own backing table.

        Raises:
            CodesystemError: If the name is invalid or already exists
            StoreError: If a database operation fails
        """
        name = (name or "").strip()
        if not _MAPPING_NAME_RE.match(name):
            raise CodesystemError("Invalid mapping name")

        table_name = f"hl7_codesystem_{name}"
        tags = list(tags or [])

        async with self._write_lock:
            try:
                async with self.session_factory() as session:
                    result = await session.execute(
                        select(CodeSystem.id).where(CodeSystem.name == name)
                    )
                    if result.first() is not None or name == self.default_name:
                        raise CodesystemError(f"Mapping '{name}' already exists")

                    session.add(CodeSystem(
                        name=name,
                        filename=f"{name}_map.xml",
                        table_name=table_name,
                        is_default=False,
                        is_current=False,
                    ))
                    await session.commit()
            except SQLAlchemyError as e:
                raise StoreError(f"Failed to create code system {name}", original_error=e) from e

            await self._upsert(table_name, tags, force_update=True)

            mapping = CodesystemMapping(name=name, table_name=table_name, tags=tags)
            with self._read_lock:
                self._mappings[name] = mapping

        logger.info("Code system mapping created", name=name, table=table_name, tags=len(tags))
        return mapping

    async def page_tags(self, name: str | None, page: int = 1, page_size: int = 50) -> tuple[list[CodeTag], int]:
        """Get one page of a mapping's backing table and the total row count."""
        table_name = await self.table_name_for(name)
        table = codetag_table(table_name)

        try:
            async with self.session_factory() as session:
                conn = await session.connection()
                exists = await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(table_name))
                if not exists:
                    return [], 0

                total = (await session.execute(select(func.count()).select_from(table))).scalar_one()
                result = await session.execute(
                    select(table)
                    .order_by(table.c.id)
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                )
                rows = [CodeTag.from_row(row._mapping) for row in result]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read code tags from {table_name}", original_error=e) from e

        return rows, total

    async def _record_document(self, name: str, filename: str, table_name: str, document: str) -> None:
        """Store the raw document in the catalogue, creating the entry if needed."""
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(CodeSystem).where(CodeSystem.name == name))
                entry = result.scalar_one_or_none()
                if entry is None:
                    entry = CodeSystem(
                        name=name,
                        is_default=name == self.default_name,
                        is_current=True,
                    )
                    session.add(entry)
                entry.filename = filename
                entry.table_name = table_name
                entry.xml = document
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to record code system {name}", original_error=e) from e

    async def _has_rows(self, table_name: str) -> bool:
        table = codetag_table(table_name)
        try:
            async with self.session_factory() as session:
                conn = await session.connection()
                exists = await conn.run_sync(lambda sync_conn: inspect(sync_conn).has_table(table_name))
                if not exists:
                    return False
                result = await session.execute(select(table.c.id).limit(1))
                return result.first() is not None
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to inspect {table_name}", original_error=e) from e

    async def _load_rows(self, table_name: str) -> list[CodeTag]:
        table = codetag_table(table_name)
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(table).order_by(table.c.id))
                return [CodeTag.from_row(row._mapping) for row in result]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load code tags from {table_name}", original_error=e) from e
