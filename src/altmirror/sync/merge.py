"""Differential merge of freshly fetched entities into a persisted grouping.

A grouping is the set of entities sharing a display name and a faction (one
``cards-<name>-<faction>.jsonl`` file).  Each merge call:

1. indexes the existing entities by alias (id, reference, ``@id``);
2. resolves every incoming record against the index and classifies it:
   ``pricing_changed`` when any pricing field differs (a snapshot is appended
   to the history), ``unchanged`` when all four match, ``new`` when no alias
   hits;
3. marks existing entities that no incoming alias reached as ``sold``, once;
4. reports whether anything worth writing happened.

Entities are never removed.  Inputs are not mutated; the result carries
copies.
"""

from __future__ import annotations

import copy
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set, Tuple

from ..utils.logging import get_logger
from .history import append_price_history, snapshot_from_pricing
from .identity import AliasIndex, resolve
from .models import PRICING_FIELDS, CatalogEntity, ChangeType, Pricing, ScrapeMetadata

logger = get_logger(__name__)

_WRITE_TRIGGERS = {ChangeType.NEW, ChangeType.PRICING_CHANGED, ChangeType.SOLD}


@dataclass
class MergeResult:
    entities: List[CatalogEntity]
    classifications: Dict[str, ChangeType] = field(default_factory=dict)
    changed: bool = False
    conflicts: int = 0
    skipped: int = 0

    @property
    def counts(self) -> Dict[ChangeType, int]:
        counts = {change: 0 for change in ChangeType}
        for change in self.classifications.values():
            counts[change] += 1
        return counts


def pricing_differs(old: Pricing, new: Pricing) -> bool:
    """Field-by-field comparison; two absent values are equal, one absent is a change."""
    for name in PRICING_FIELDS:
        before, after = getattr(old, name), getattr(new, name)
        if before is None and after is None:
            continue
        if before is None or after is None or before != after:
            return True
    return False


def _create(record: CatalogEntity, now: str) -> CatalogEntity:
    entity = copy.deepcopy(record)
    seeded = record.pricing.has_signal()
    entity.metadata = ScrapeMetadata(
        first_seen_at=now,
        last_updated_at=now,
        pricing_updated_at=now if seeded else None,
        change_type=ChangeType.NEW,
        price_history=[snapshot_from_pricing(record.pricing, now)] if seeded else [],
    )
    return entity


def _refresh_descriptive(entity: CatalogEntity, record: CatalogEntity) -> None:
    if record.name:
        entity.name = record.name
    if not entity.reference and record.reference:
        entity.reference = record.reference
    if not entity.path_id and record.path_id:
        entity.path_id = record.path_id
    for key, value in record.attributes.items():
        if value is not None:
            entity.attributes[key] = value
    entity.raw.update(copy.deepcopy(record.raw))


def merge_grouping(
    incoming: Iterable[CatalogEntity],
    existing: Iterable[CatalogEntity],
    now: str,
    detect_sold: bool = True,
) -> MergeResult:
    merged: "OrderedDict[str, CatalogEntity]" = OrderedDict()
    for entity in existing:
        if entity.canonical_id in merged:
            logger.warning("Duplicate canonical id %s in grouping, keeping the first", entity.canonical_id)
            continue
        merged[entity.canonical_id] = copy.deepcopy(entity)

    index = AliasIndex.build(merged.values())
    classifications: Dict[str, ChangeType] = {}
    matched: Set[str] = set()
    relisted: Set[str] = set()
    conflicts = 0
    skipped = 0

    for record in incoming:
        if not record.aliases:
            logger.warning("Skipping record without identity fields: %r", record.name)
            skipped += 1
            continue

        clash = index.conflicts(record)
        if clash:
            conflicts += 1
            logger.warning(
                "Record %s matches several entities %s; merging into %s",
                record.canonical_id, clash, clash[0],
            )

        target_id = resolve(record, index)
        if target_id is None:
            entity = _create(record, now)
            merged[entity.canonical_id] = entity
            index.add(entity)
            matched.add(entity.canonical_id)
            classifications[entity.canonical_id] = ChangeType.NEW
            continue

        entity = merged[target_id]
        if entity.is_sold and target_id not in matched:
            relisted.add(target_id)
        matched.add(target_id)
        previous = classifications.get(target_id)

        _refresh_descriptive(entity, record)
        index.add(entity)
        if entity.metadata.first_seen_at is None:
            entity.metadata.first_seen_at = now

        if pricing_differs(entity.pricing, record.pricing):
            entity.pricing = record.pricing
            append_price_history(entity, snapshot_from_pricing(record.pricing, now))
            entity.metadata.pricing_updated_at = now
            entity.metadata.last_updated_at = now
            outcome = ChangeType.NEW if previous == ChangeType.NEW else ChangeType.PRICING_CHANGED
        else:
            outcome = previous or ChangeType.UNCHANGED

        if target_id in relisted:
            entity.metadata.last_updated_at = now
        entity.metadata.change_type = outcome
        classifications[target_id] = outcome

    if detect_sold:
        for canonical_id, entity in merged.items():
            if canonical_id in matched or entity.is_sold:
                continue
            entity.metadata.change_type = ChangeType.SOLD
            entity.metadata.last_updated_at = now
            classifications[canonical_id] = ChangeType.SOLD

    changed = bool(relisted) or any(c in _WRITE_TRIGGERS for c in classifications.values())
    return MergeResult(
        entities=list(merged.values()),
        classifications=classifications,
        changed=changed,
        conflicts=conflicts,
        skipped=skipped,
    )


def group_by_grouping(entities: Iterable[CatalogEntity]) -> "OrderedDict[Tuple[str, str], List[CatalogEntity]]":
    groups: "OrderedDict[Tuple[str, str], List[CatalogEntity]]" = OrderedDict()
    for entity in entities:
        groups.setdefault(entity.grouping_key, []).append(entity)
    return groups
