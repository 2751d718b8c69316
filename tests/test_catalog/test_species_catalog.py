"""Tests for the JSON species catalog and label lookups."""

import asyncio
import json

import pytest

from birdcall_id.catalog.catalog import JsonSpeciesCatalog, normalize_label
from birdcall_id.catalog.exceptions import CatalogNotLoadedError, CatalogUnavailableError
from birdcall_id.catalog.models import SpeciesRecord

SPECIES = [
    {
        "id": "1",
        "bird_nm": "Eurasian Tree Sparrow",
        "scientific_nm": "Passer montanus",
        "family": "Passeridae",
        "habitat": "Urban areas",
        "description": "Small brown sparrow",
        "created_at": "2024-01-01T00:00:00",
        "updated_at": "2024-01-01T00:00:00",
    },
    {
        "id": "2",
        "bird_nm": "Sooty-headed Bulbul",
        "scientific_nm": "Pycnonotus aurigaster",
        "family": "Pycnonotidae",
        "habitat": "Scrub",
    },
]


@pytest.fixture
def catalog_file(tmp_path):
    path = tmp_path / "species.json"
    path.write_text(json.dumps(SPECIES))
    return path


@pytest.mark.unit
class TestSpeciesRecord:
    """Test cases for SpeciesRecord parsing."""

    def test_from_dict_ignores_unknown_keys(self) -> None:
        """Test extra keys in a catalog entry are ignored."""
        record = SpeciesRecord.from_dict({**SPECIES[0], "image_url": "x.png"})

        assert record.bird_nm == "Eurasian Tree Sparrow"
        assert record.description == "Small brown sparrow"

    def test_from_dict_requires_names(self) -> None:
        """Test entries without a scientific name are rejected."""
        with pytest.raises(ValueError, match="scientific_nm"):
            SpeciesRecord.from_dict({"id": "3", "bird_nm": "Mystery"})

    def test_numeric_id_becomes_string(self) -> None:
        """Test integer ids are normalised to strings."""
        record = SpeciesRecord.from_dict({**SPECIES[1], "id": 2})

        assert record.id == "2"
        assert record.to_dict()["id"] == "2"


@pytest.mark.unit
class TestNormalizeLabel:
    """Test cases for label normalisation."""

    def test_underscores_and_case(self) -> None:
        """Test classifier-style labels match catalog names."""
        assert normalize_label("Passer_montanus") == "passer montanus"
        assert normalize_label("  Passer   Montanus ") == "passer montanus"


@pytest.mark.unit
class TestJsonSpeciesCatalog:
    """Test cases for JsonSpeciesCatalog."""

    @pytest.mark.asyncio
    async def test_load_and_lookup_by_id(self, catalog_file) -> None:
        """Test records can be looked up by id after loading."""
        catalog = JsonSpeciesCatalog(catalog_file)

        await catalog.load()

        assert catalog.is_loaded
        assert len(catalog) == 2
        assert catalog.get_by_id("2").bird_nm == "Sooty-headed Bulbul"

    @pytest.mark.asyncio
    async def test_lookup_by_scientific_name(self, catalog_file) -> None:
        """Test class labels that are scientific names resolve too."""
        catalog = JsonSpeciesCatalog(catalog_file)
        await catalog.load()

        assert catalog.get_by_id("Passer_montanus").id == "1"
        assert catalog.get_by_id("pycnonotus aurigaster").id == "2"
        assert catalog.get_by_id("Lonchura punctulata") is None

    def test_lookup_before_load(self, catalog_file) -> None:
        """Test lookups before loading raise CatalogNotLoadedError."""
        catalog = JsonSpeciesCatalog(catalog_file)

        with pytest.raises(CatalogNotLoadedError):
            catalog.get_by_id("1")

    @pytest.mark.asyncio
    async def test_paginated_body(self, tmp_path) -> None:
        """Test a {"data": [...]} body is accepted."""
        path = tmp_path / "species.json"
        path.write_text(json.dumps({"data": SPECIES, "total": 2}))
        catalog = JsonSpeciesCatalog(path)

        await catalog.load()

        assert len(catalog) == 2

    @pytest.mark.asyncio
    async def test_malformed_entries_are_skipped(self, tmp_path) -> None:
        """Test invalid entries are skipped rather than failing the load."""
        path = tmp_path / "species.json"
        path.write_text(json.dumps([SPECIES[0], {"id": "9"}, "junk"]))
        catalog = JsonSpeciesCatalog(path)

        await catalog.load()

        assert len(catalog) == 1

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path) -> None:
        """Test a missing catalog file raises CatalogUnavailableError."""
        catalog = JsonSpeciesCatalog(tmp_path / "absent.json")

        with pytest.raises(CatalogUnavailableError, match="not found"):
            await catalog.load()

        assert not catalog.is_loaded

    @pytest.mark.asyncio
    async def test_invalid_json(self, tmp_path) -> None:
        """Test a corrupt catalog file raises CatalogUnavailableError."""
        path = tmp_path / "species.json"
        path.write_text("{not json")

        with pytest.raises(CatalogUnavailableError):
            await JsonSpeciesCatalog(path).load()

    @pytest.mark.asyncio
    async def test_ensure_loaded_reads_once(self, catalog_file) -> None:
        """Test concurrent ensure_loaded calls share one read."""
        catalog = JsonSpeciesCatalog(catalog_file)
        reads = 0
        original = catalog.fetch_all

        async def counting_fetch_all():
            nonlocal reads
            reads += 1
            return await original()

        catalog.fetch_all = counting_fetch_all

        await asyncio.gather(*(catalog.ensure_loaded() for _ in range(5)))

        assert reads == 1

    @pytest.mark.asyncio
    async def test_probe_returns_first_record(self, catalog_file) -> None:
        """Test probe returns a record without building the index."""
        catalog = JsonSpeciesCatalog(catalog_file)

        record = await catalog.probe()

        assert record.id == "1"
        assert not catalog.is_loaded
