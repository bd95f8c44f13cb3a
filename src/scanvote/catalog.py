"""Identity catalog: known people/artworks and their reference material.

The catalog is a JSON array of entries::

    [
      {
        "label": "mona_lisa",
        "name": "Mona Lisa",
        "description": "Leonardo da Vinci, c. 1503",
        "image_url": "/images/mona_lisa.jpg",
        "reference_image": "refs/mona_lisa.jpg",
        "embeddings": [[0.01, -0.2, ...]]
      }
    ]

``reference_image`` paths are resolved relative to the catalog file.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
from pydantic import BaseModel, Field, TypeAdapter

from scanvote.engine.results import Identity

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


class CatalogEntry(BaseModel):
    """One identity as stored in the catalog file."""

    label: str = Field(min_length=1)
    name: str
    description: str = ""
    image_url: str = ""
    reference_image: str | None = None
    embeddings: list[list[float]] = Field(default_factory=list)


_ENTRIES_ADAPTER = TypeAdapter(list[CatalogEntry])


class IdentityCatalog:
    """Read-only lookup of identities by label."""

    def __init__(self, entries: Iterable[CatalogEntry], base_dir: Path | None = None) -> None:
        self._entries: dict[str, CatalogEntry] = {}
        for entry in entries:
            if entry.label in self._entries:
                raise ValueError(f"Duplicate catalog label: {entry.label}")
            self._entries[entry.label] = entry
        self._identities = {
            label: Identity(
                label=label,
                name=entry.name,
                description=entry.description,
                image_url=entry.image_url,
            )
            for label, entry in self._entries.items()
        }
        self._base_dir = base_dir or Path.cwd()

    @classmethod
    def load(cls, path: str | Path) -> IdentityCatalog:
        """Load a catalog from a JSON file.

        Raises:
            FileNotFoundError: If the file does not exist.
            pydantic.ValidationError: If the file does not match the catalog schema.
        """
        catalog_path = Path(path)
        entries = _ENTRIES_ADAPTER.validate_json(catalog_path.read_bytes())
        catalog = cls(entries, base_dir=catalog_path.parent)
        logger.info("Loaded %d identities from %s", len(catalog), catalog_path)
        return catalog

    @classmethod
    def empty(cls) -> IdentityCatalog:
        return cls([])

    def get(self, label: str) -> Identity | None:
        return self._identities.get(label)

    def __len__(self) -> int:
        return len(self._identities)

    def __iter__(self) -> Iterator[Identity]:
        return iter(self._identities.values())

    def __contains__(self, label: object) -> bool:
        return label in self._identities

    def reference_images(self) -> dict[str, Path]:
        """Return resolved reference image paths for entries that declare one."""
        return {
            label: self._base_dir / entry.reference_image
            for label, entry in self._entries.items()
            if entry.reference_image
        }

    def embeddings(self) -> dict[str, list[NDArray[np.float32]]]:
        """Return precomputed reference embeddings for entries that declare them."""
        return {
            label: [np.asarray(vector, dtype=np.float32) for vector in entry.embeddings]
            for label, entry in self._entries.items()
            if entry.embeddings
        }
