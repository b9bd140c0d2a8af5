"""Tests for the code table registry."""

import pytest
from sqlalchemy import select

from acm_gateway.integrations.base import LoadError
from acm_gateway.models import CodeSystem, codetag_table
from acm_gateway.services.codesystem_service import (
    BootstrapStatus,
    CodeTableRegistry,
    CodeTag,
    CodesystemError,
    mapping_name_from_filename,
    parse_codesystem_document,
)

from conftest import CODESYSTEM_DOCUMENT, make_tag


class TestParseCodesystemDocument:
    """Tests for code system XML parsing."""

    def test_parse_child_elements(self):
        tags = parse_codesystem_document(CODESYSTEM_DOCUMENT)

        assert len(tags) == 6
        assert tags[0].tagkey == "1"
        assert tags[0].encode == "147842"
        assert tags[0].sub_id == "1.1.1.1"
        assert tags[0].description == "Heart Rate"
        assert tags[0].observation_type == "Physiological"

    def test_parse_attributes(self):
        """Attributes should be read with lowercased names."""
        tags = parse_codesystem_document(
            '<codesystem><tag TagKey="9" Encode="150456" Description="SpO2"/></codesystem>'
        )

        assert tags[0].tagkey == "9"
        assert tags[0].encode == "150456"
        assert tags[0].description == "SpO2"

    def test_repeated_child_first_wins(self):
        tags = parse_codesystem_document(
            "<codesystem><tag><encode>1</encode><encode>2</encode></tag></codesystem>"
        )

        assert tags[0].encode == "1"

    def test_byte_order_mark(self):
        tags = parse_codesystem_document("\ufeff" + CODESYSTEM_DOCUMENT)

        assert len(tags) == 6

    def test_no_tags(self):
        with pytest.raises(LoadError):
            parse_codesystem_document("<codesystem><other/></codesystem>")

    def test_malformed(self):
        with pytest.raises(LoadError):
            parse_codesystem_document("<codesystem><tag>")

    def test_entity_expansion_rejected(self):
        """Documents declaring entities should be refused."""
        document = (
            '<?xml version="1.0"?><!DOCTYPE x [<!ENTITY a "aaaa">]>'
            "<codesystem><tag><encode>&a;</encode></tag></codesystem>"
        )
        with pytest.raises(LoadError):
            parse_codesystem_document(document)

    def test_mapping_name_from_filename(self):
        assert mapping_name_from_filename("/etc/acm/300_map.xml") == "300"
        assert mapping_name_from_filename("icu_map.xml") == "icu"
        assert mapping_name_from_filename("codes.xml") == ""


class TestLookups:
    """Tests for registry lookups."""

    @pytest.mark.asyncio
    async def test_lookup_first_match(self, registry: CodeTableRegistry):
        """Without a sub_id the first tag for an encode should win."""
        assert registry.describe("147842") == "Heart Rate"

    @pytest.mark.asyncio
    async def test_lookup_exact_sub_id(self, registry: CodeTableRegistry):
        assert registry.describe("147842", "1.2.1.1") == "Pulse Rate"
        assert registry.describe("147842", "9.9.9.9") is None

    @pytest.mark.asyncio
    async def test_lookup_miss(self, registry: CodeTableRegistry):
        assert registry.lookup("000000") is None
        assert registry.lookup(None) is None
        assert registry.observation_type("000000") is None

    @pytest.mark.asyncio
    async def test_observation_type(self, registry: CodeTableRegistry):
        assert registry.observation_type("196650") == "Technical"

    @pytest.mark.asyncio
    async def test_source_channel(self, registry: CodeTableRegistry):
        assert registry.source_channel("147842", "1.2.1.1") == "SpO2/Pulse"
        assert registry.source_channel("147842", None) is None
        assert registry.source_channel("000000", "1.1.1.1") is None

    @pytest.mark.asyncio
    async def test_source_channel_missing_parts(self, empty_registry: CodeTableRegistry):
        """Missing source or channel should render as empty text."""
        document = (
            "<codesystem>"
            + make_tag("1", "150021", "NIBP", subid="1.3.1.1", source="NIBP")
            + "</codesystem>"
        )
        await empty_registry.bootstrap(document, name="300")

        assert empty_registry.source_channel("150021", "1.3.1.1") == "NIBP/"
        assert empty_registry.source_channel("150021", "") is None

    @pytest.mark.asyncio
    async def test_empty_registry(self, empty_registry: CodeTableRegistry):
        """An empty registry should fail closed."""
        assert empty_registry.tag_count == 0
        assert empty_registry.active_name is None
        assert empty_registry.describe("147842") is None
        assert empty_registry.source_channel("147842", "1.1.1.1") is None


class TestBootstrap:
    """Tests for registry bootstrap."""

    @pytest.mark.asyncio
    async def test_first_bootstrap_loads_document(self, empty_registry: CodeTableRegistry, db_session):
        result = await empty_registry.bootstrap(CODESYSTEM_DOCUMENT, name="300", filename="300_map.xml")

        assert result.status == BootstrapStatus.LOADED
        assert result.table_name == "hl7_codesystem_300"
        assert result.tag_count == 6
        assert empty_registry.tag_count == 6
        assert empty_registry.active_name == "300"

        table = codetag_table("hl7_codesystem_300")
        rows = (await db_session.execute(select(table))).all()
        assert len(rows) == 6

        entry = (await db_session.execute(select(CodeSystem))).scalar_one()
        assert entry.name == "300"
        assert entry.is_default is True
        assert entry.xml == CODESYSTEM_DOCUMENT

    @pytest.mark.asyncio
    async def test_second_bootstrap_reloads_from_database(self, registry: CodeTableRegistry):
        """Once the table holds rows, the table should win over the document."""
        await registry.upsert(
            "hl7_codesystem_300",
            [CodeTag(tagkey="1", encode="147842", sub_id="1.1.1.1", description="HR (edited)")],
        )
        other = CodeTableRegistry(session_factory=registry.session_factory)

        result = await other.bootstrap(CODESYSTEM_DOCUMENT, name="300")

        assert result.status == BootstrapStatus.RELOADED
        assert "already exists" in result.message
        assert other.describe("147842", "1.1.1.1") == "HR (edited)"

    @pytest.mark.asyncio
    async def test_bootstrap_other_name_uses_own_table(self, empty_registry: CodeTableRegistry):
        result = await empty_registry.bootstrap(CODESYSTEM_DOCUMENT, name="icu")

        assert result.table_name == "hl7_codesystem_icu"
        assert empty_registry.get_mapping("icu").table_name == "hl7_codesystem_icu"

    @pytest.mark.asyncio
    async def test_bootstrap_malformed_keeps_index(self, registry: CodeTableRegistry):
        with pytest.raises(LoadError):
            await registry.bootstrap("<codesystem/>", name="300")

        assert registry.tag_count == 6

    @pytest.mark.asyncio
    async def test_bootstrap_file(self, empty_registry: CodeTableRegistry, tmp_path):
        path = tmp_path / "300_map.xml"
        path.write_text("\ufeff" + CODESYSTEM_DOCUMENT, encoding="utf-8")

        result = await empty_registry.bootstrap_file(path)

        assert result.name == "300"
        assert result.tag_count == 6

    @pytest.mark.asyncio
    async def test_bootstrap_missing_file(self, empty_registry: CodeTableRegistry, tmp_path):
        with pytest.raises(LoadError):
            await empty_registry.bootstrap_file(tmp_path / "300_map.xml")

        assert empty_registry.tag_count == 0

    @pytest.mark.asyncio
    async def test_bootstrap_file_without_mapping_name(self, empty_registry: CodeTableRegistry, tmp_path):
        path = tmp_path / "codes.xml"
        path.write_text(CODESYSTEM_DOCUMENT, encoding="utf-8")

        with pytest.raises(LoadError):
            await empty_registry.bootstrap_file(path)


class TestUpsert:
    """Tests for keyed upsert."""

    @pytest.mark.asyncio
    async def test_insert_new_tag(self, registry: CodeTableRegistry):
        affected = await registry.upsert(
            "hl7_codesystem_300",
            [CodeTag(tagkey="50", encode="150456", description="SpO2")],
        )

        assert affected == 1
        tags, total = await registry.page_tags("300", page=1, page_size=100)
        assert total == 7
        assert tags[-1].description == "SpO2"

    @pytest.mark.asyncio
    async def test_existing_tag_skipped_without_force(self, registry: CodeTableRegistry):
        affected = await registry.upsert(
            "hl7_codesystem_300",
            [CodeTag(tagkey="1", encode="147842", sub_id="1.1.1.1", description="Changed")],
            force_update=False,
        )

        assert affected == 0
        tags, _ = await registry.page_tags("300")
        assert tags[0].description == "Heart Rate"

    @pytest.mark.asyncio
    async def test_existing_tag_updated_with_force(self, registry: CodeTableRegistry):
        affected = await registry.upsert(
            "hl7_codesystem_300",
            [CodeTag(tagkey="1", encode="147842", sub_id="1.1.1.1", description="Changed")],
        )

        assert affected == 1
        tags, _ = await registry.page_tags("300")
        assert tags[0].description == "Changed"

    @pytest.mark.asyncio
    async def test_index_description_refreshed(self, registry: CodeTableRegistry):
        """Only the description of the matching in-memory tag should change."""
        await registry.upsert(
            "hl7_codesystem_300",
            [CodeTag(tagkey="2", encode="147842", sub_id="1.2.1.1", description="Pulse", source="Other")],
        )

        assert registry.describe("147842", "1.2.1.1") == "Pulse"
        assert registry.describe("147842", "1.1.1.1") == "Heart Rate"
        assert registry.source_channel("147842", "1.2.1.1") == "SpO2/Pulse"

    @pytest.mark.asyncio
    async def test_invalid_table_name(self, registry: CodeTableRegistry):
        with pytest.raises(CodesystemError):
            await registry.upsert("bad-table; drop", [CodeTag(tagkey="1")])


class TestCatalogue:
    """Tests for the code system catalogue."""

    @pytest.mark.asyncio
    async def test_create_mapping(self, registry: CodeTableRegistry):
        mapping = await registry.create_mapping(
            "icu",
            [CodeTag(tagkey="1", encode="150456", description="SpO2")],
        )

        assert mapping.table_name == "hl7_codesystem_icu"
        assert await registry.table_name_for("icu") == "hl7_codesystem_icu"
        names = [entry.name for entry in await registry.list_mappings()]
        assert names == ["300", "icu"]

        tags, total = await registry.page_tags("icu")
        assert total == 1
        assert tags[0].encode == "150456"

    @pytest.mark.asyncio
    async def test_create_mapping_does_not_change_active(self, registry: CodeTableRegistry):
        await registry.create_mapping("icu", [CodeTag(tagkey="1", encode="150456", description="SpO2")])

        assert registry.active_name == "300"
        assert registry.describe("150456") is None

    @pytest.mark.asyncio
    async def test_create_duplicate_mapping(self, registry: CodeTableRegistry):
        await registry.create_mapping("icu")

        with pytest.raises(CodesystemError):
            await registry.create_mapping("icu")
        with pytest.raises(CodesystemError):
            await registry.create_mapping("300")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "bad-name", "a b", "x;drop"])
    async def test_create_invalid_name(self, registry: CodeTableRegistry, name):
        with pytest.raises(CodesystemError):
            await registry.create_mapping(name)

    @pytest.mark.asyncio
    async def test_unknown_name_uses_default_table(self, registry: CodeTableRegistry):
        assert await registry.table_name_for("missing") == "hl7_codesystem_300"
        assert await registry.table_name_for(None) == "hl7_codesystem_300"

    @pytest.mark.asyncio
    async def test_page_tags_pagination(self, registry: CodeTableRegistry):
        tags, total = await registry.page_tags("300", page=2, page_size=4)

        assert total == 6
        assert [tag.tagkey for tag in tags] == ["5", "6"]

    @pytest.mark.asyncio
    async def test_page_tags_missing_table(self, empty_registry: CodeTableRegistry):
        assert await empty_registry.page_tags("300") == ([], 0)

    @pytest.mark.asyncio
    async def test_duplicate_encodes_keep_document_order(self, empty_registry: CodeTableRegistry):
        document = (
            "<codesystem>"
            + make_tag("1", "147842", "First")
            + make_tag("2", "147842", "Second")
            + "</codesystem>"
        )
        await empty_registry.bootstrap(document, name="300")

        assert empty_registry.describe("147842") == "First"
        assert [tag.description for tag in empty_registry.get_tags()] == ["First", "Second"]


class TestTaglessTags:
    """Tests for tags that carry no tagkey."""

    @pytest.mark.asyncio
    async def test_tagless_tags_inserted_separately(self, registry: CodeTableRegistry):
        affected = await registry.upsert(
            "hl7_codesystem_300",
            [
                CodeTag(encode="150456", description="SpO2"),
                CodeTag(encode="150344", description="Temperature"),
            ],
            force_update=False,
        )

        assert affected == 2
        tags, total = await registry.page_tags("300", page=1, page_size=100)
        assert total == 8
        assert [tag.description for tag in tags[-2:]] == ["SpO2", "Temperature"]

    @pytest.mark.asyncio
    async def test_bootstrap_stores_every_tagless_row(self, empty_registry: CodeTableRegistry, db_session):
        document = (
            "<codesystem>"
            "<tag><encode>147842</encode><description>Heart Rate</description></tag>"
            "<tag><encode>150456</encode><description>SpO2</description></tag>"
            "<tag><encode>150344</encode><description>Temperature</description></tag>"
            "</codesystem>"
        )

        result = await empty_registry.bootstrap(document, name="300")

        assert result.tag_count == 3
        rows = (await db_session.execute(select(codetag_table("hl7_codesystem_300")))).all()
        assert len(rows) == 3


class TestBootstrapTableName:
    """Tests for mapping names that cannot back a table."""

    @pytest.mark.asyncio
    async def test_dotted_file_name_rejected(self, empty_registry: CodeTableRegistry, db_session, tmp_path):
        path = tmp_path / "300.v2_map.xml"
        path.write_text(CODESYSTEM_DOCUMENT, encoding="utf-8")

        with pytest.raises(LoadError):
            await empty_registry.bootstrap_file(path)

        entries = (await db_session.execute(select(CodeSystem))).scalars().all()
        assert entries == []
        assert empty_registry.tag_count == 0
