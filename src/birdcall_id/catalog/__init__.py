"""Species record store consulted when resolving an identification."""

from .catalog import JsonSpeciesCatalog, SpeciesCatalog
from .database import SqliteSpeciesCatalog
from .models import SpeciesRecord

__all__ = [
    "SpeciesRecord",
    "SpeciesCatalog",
    "JsonSpeciesCatalog",
    "SqliteSpeciesCatalog",
]
