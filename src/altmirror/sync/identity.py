from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from ..utils.logging import get_logger
from .models import CatalogEntity

logger = get_logger(__name__)

# Lookup order; the first alias type that hits decides the canonical id.
ALIAS_FIELDS = ("canonical_id", "reference", "path_id")


class AliasIndex:
    """Per-grouping lookup from each alias type to a canonical id.

    Built fresh for every merge call.  When two entities claim the same alias
    the first one keeps it and the clash is logged.
    """

    def __init__(self) -> None:
        self._maps: Dict[str, Dict[str, str]] = {f: {} for f in ALIAS_FIELDS}
        self.duplicates: List[str] = []

    @classmethod
    def build(cls, entities: Iterable[CatalogEntity]) -> "AliasIndex":
        index = cls()
        for entity in entities:
            index.add(entity)
        return index

    def add(self, entity: CatalogEntity) -> None:
        for field_name in ALIAS_FIELDS:
            value = getattr(entity, field_name)
            if not value:
                continue
            owner = self._maps[field_name].setdefault(value, entity.canonical_id)
            if owner != entity.canonical_id:
                self.duplicates.append(value)
                logger.warning(
                    "Alias %s=%s already belongs to %s, ignoring it for %s",
                    field_name, value, owner, entity.canonical_id,
                )

    def matches(self, record: CatalogEntity) -> List[str]:
        """Canonical ids hit by the record's aliases, in lookup order, without repeats."""
        hits: List[str] = []
        for field_name in ALIAS_FIELDS:
            value = getattr(record, field_name)
            if not value:
                continue
            owner = self._maps[field_name].get(value)
            if owner and owner not in hits:
                hits.append(owner)
        return hits

    def conflicts(self, record: CatalogEntity) -> List[str]:
        """Every canonical id the record points at, when it points at more than one."""
        hits = self.matches(record)
        return hits if len(hits) > 1 else []

    def __len__(self) -> int:
        return len(self._maps["canonical_id"])


def resolve(record: CatalogEntity, index: AliasIndex) -> Optional[str]:
    """Canonical id of the existing entity sharing any alias with ``record``."""
    hits = index.matches(record)
    return hits[0] if hits else None
