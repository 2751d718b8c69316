"""Data models for the species catalog."""

from dataclasses import asdict, dataclass
from typing import Any


@dataclass
class SpeciesRecord:
    """A bird species entry as stored in the catalog."""

    id: str
    bird_nm: str
    scientific_nm: str
    family: str = ""
    habitat: str = ""
    description: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SpeciesRecord":
        """
        Build a record from a catalog entry, ignoring unknown keys.

        Raises:
            ValueError: If id, bird_nm or scientific_nm is missing
        """
        missing = [key for key in ("id", "bird_nm", "scientific_nm") if not data.get(key)]
        if missing:
            raise ValueError(f"Species record missing required fields: {missing}")
        return cls(
            id=str(data["id"]),
            bird_nm=str(data["bird_nm"]),
            scientific_nm=str(data["scientific_nm"]),
            family=str(data.get("family") or ""),
            habitat=str(data.get("habitat") or ""),
            description=data.get("description"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
