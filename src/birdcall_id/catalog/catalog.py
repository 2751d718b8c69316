"""Species catalog lookups by class label."""

import asyncio
import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from .config import DEFAULT_CATALOG_PATH
from .exceptions import CatalogNotLoadedError, CatalogUnavailableError
from .models import SpeciesRecord

logger = logging.getLogger(__name__)


def normalize_label(label: str) -> str:
    """
    Normalize a class label or scientific name for matching.

    Args:
        label: Raw label (e.g. "Passer_montanus")

    Returns:
        Lowercase, single-spaced form (e.g. "passer montanus")
    """
    return re.sub(r"[\s_]+", " ", label).strip().lower()


class SpeciesCatalog(ABC):
    """
    In-memory index over an external species record store.

    The store is read once by `load()`; lookups are then synchronous so the
    result resolver stays free of I/O.
    """

    def __init__(self) -> None:
        self._by_id: dict[str, SpeciesRecord] = {}
        self._by_scientific_name: dict[str, SpeciesRecord] = {}
        self._loaded = False
        self._load_lock = asyncio.Lock()

    @abstractmethod
    async def fetch_all(self) -> list[SpeciesRecord]:
        """
        Read every record from the backing store.

        Raises:
            CatalogUnavailableError: If the store cannot be read
        """
        pass

    @abstractmethod
    async def probe(self) -> SpeciesRecord | None:
        """
        Fetch a single record to establish connectivity.

        Returns:
            Any one record, or None for an empty store

        Raises:
            CatalogUnavailableError: If the store cannot be read
        """
        pass

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def __len__(self) -> int:
        return len(self._by_id)

    async def load(self) -> None:
        """Rebuild the index from the backing store."""
        records = await self.fetch_all()

        by_id: dict[str, SpeciesRecord] = {}
        by_scientific_name: dict[str, SpeciesRecord] = {}
        for record in records:
            if record.id in by_id:
                logger.warning(f"Duplicate species id '{record.id}', keeping last")
            by_id[record.id] = record
            by_scientific_name[normalize_label(record.scientific_nm)] = record

        self._by_id = by_id
        self._by_scientific_name = by_scientific_name
        self._loaded = True
        logger.info(f"Species catalog loaded with {len(by_id)} records")

    async def ensure_loaded(self) -> None:
        """Load the index once; concurrent callers share the same load."""
        async with self._load_lock:
            if not self._loaded:
                await self.load()

    def get_by_id(self, label: str) -> SpeciesRecord | None:
        """
        Look up the record for a classifier label.

        The label is tried as a record id first, then as a scientific name.

        Args:
            label: Class label produced by the classifier

        Returns:
            Matching record, or None when the species is not catalogued

        Raises:
            CatalogNotLoadedError: If `load()` has not completed
        """
        if not self._loaded:
            raise CatalogNotLoadedError("Species catalog has not been loaded")

        record = self._by_id.get(label)
        if record is None:
            record = self._by_scientific_name.get(normalize_label(label))
        return record


class JsonSpeciesCatalog(SpeciesCatalog):
    """Catalog backed by a static JSON list of species records."""

    def __init__(self, path: str | Path = DEFAULT_CATALOG_PATH) -> None:
        """
        Initialize the catalog.

        Args:
            path: JSON file holding a list of species objects
        """
        super().__init__()
        self.path = Path(path)

    def _read_records(self) -> list[SpeciesRecord]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise CatalogUnavailableError(f"Catalog file not found: {self.path}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogUnavailableError(f"Failed to read catalog {self.path}: {e}") from e

        # Accept both a bare list and a paginated {"data": [...]} body
        if isinstance(raw, dict):
            raw = raw.get("data", [])
        if not isinstance(raw, list):
            raise CatalogUnavailableError(f"Catalog {self.path} is not a list of records")

        records = []
        for entry in raw:
            try:
                records.append(SpeciesRecord.from_dict(entry))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed catalog entry: {e}")
        return records

    async def fetch_all(self) -> list[SpeciesRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read_records)

    async def probe(self) -> SpeciesRecord | None:
        records = await self.fetch_all()
        return records[0] if records else None
