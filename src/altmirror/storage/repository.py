from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import pandas as pd

from ..config.settings import CARD_DB_DIR
from ..errors import MalformedRecordError
from ..ingestion.parse import entity_from_payload
from ..sync.models import CatalogEntity
from ..utils.logging import get_logger

logger = get_logger(__name__)

FILE_PREFIX = "cards-"
FILE_SUFFIX = ".jsonl"

FRAME_COLUMNS = [
    "id", "reference", "path_id", "name", "faction",
    "card_set", "rarity", "card_type",
    "main_cost", "recall_cost", "forest_power", "mountain_power", "ocean_power",
    "lower_price", "last_sale", "in_sale", "available_count",
    "first_seen_at", "last_updated_at", "pricing_updated_at", "change_type",
    "history_len", "source_file",
]


def sanitize_name(name: Optional[str]) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9\s]", "", name or "")
    return re.sub(r"\s+", "-", cleaned.strip()).lower()


def grouping_filename(name: Optional[str], faction: Optional[str]) -> str:
    return f"{FILE_PREFIX}{sanitize_name(name)}-{(faction or 'none').strip()}{FILE_SUFFIX}"


def parse_grouping_filename(filename: str) -> Optional[Tuple[str, str]]:
    """``cards-the-name-AX.jsonl`` -> ``("the-name", "AX")``; None when unparsable."""
    if not (filename.startswith(FILE_PREFIX) and filename.endswith(FILE_SUFFIX)):
        return None
    stem = filename[len(FILE_PREFIX):-len(FILE_SUFFIX)]
    name, sep, faction = stem.rpartition("-")
    if not sep or not name or not faction:
        return None
    return name, faction


def read_jsonl_entities(path: Path) -> List[CatalogEntity]:
    """Entities stored one per line; bad lines are skipped with a warning."""
    entities: List[CatalogEntity] = []
    if not path.exists():
        return entities
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Could not read %s: %s", path.name, exc)
        return entities

    for lineno, line in enumerate(text.splitlines(), start=1):
        line = line.strip()
        if not line:
            continue
        try:
            entities.append(entity_from_payload(json.loads(line)))
        except (ValueError, MalformedRecordError) as exc:
            logger.warning("Skipping malformed record %s:%d: %s", path.name, lineno, exc)
    return entities


def write_jsonl_entities(path: Path, entities: Iterable[CatalogEntity]) -> int:
    """Rewrite ``path`` atomically; returns the number of lines written."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [json.dumps(e.to_dict(), ensure_ascii=False, sort_keys=True) for e in entities]
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")
    os.replace(tmp_path, path)
    return len(lines)


class GroupedRepository:
    """Card store: one JSONL file per display name + faction grouping."""

    def __init__(self, root: Path = CARD_DB_DIR) -> None:
        self.root = Path(root)

    def path_for(self, grouping_key: Tuple[str, str]) -> Path:
        name, faction = grouping_key
        return self.root / grouping_filename(name, faction)

    def read_file(self, path: Path) -> List[CatalogEntity]:
        return read_jsonl_entities(path)

    def write_file(self, path: Path, entities: Iterable[CatalogEntity]) -> Path:
        count = write_jsonl_entities(path, entities)
        logger.debug("Wrote %d entities to %s", count, path.name)
        return path

    def read_grouping(self, grouping_key: Tuple[str, str]) -> List[CatalogEntity]:
        return self.read_file(self.path_for(grouping_key))

    def write_grouping(self, grouping_key: Tuple[str, str], entities: Iterable[CatalogEntity]) -> Path:
        return self.write_file(self.path_for(grouping_key), entities)

    def iter_files(self) -> Iterator[Path]:
        if not self.root.exists():
            return iter(())
        return iter(sorted(
            p for p in self.root.iterdir()
            if p.is_file() and p.name.startswith(FILE_PREFIX) and p.name.endswith(FILE_SUFFIX)
        ))

    def list_groupings(self) -> List[Tuple[str, str]]:
        groupings = []
        for path in self.iter_files():
            parsed = parse_grouping_filename(path.name)
            if parsed is None:
                logger.warning("Could not parse grouping from filename %s, skipping", path.name)
                continue
            groupings.append(parsed)
        return groupings

    def load_all(self) -> List[CatalogEntity]:
        entities: List[CatalogEntity] = []
        files = 0
        for path in self.iter_files():
            entities.extend(read_jsonl_entities(path))
            files += 1
        logger.info("Loaded %d cards from %d files", len(entities), files)
        return entities

    def load_frame(self) -> pd.DataFrame:
        """Flatten the whole store into one row per entity."""
        rows: List[Dict] = []
        for path in self.iter_files():
            for entity in read_jsonl_entities(path):
                row = {
                    "id": entity.canonical_id,
                    "reference": entity.reference,
                    "path_id": entity.path_id,
                    "name": entity.name,
                    "faction": entity.faction,
                    "lower_price": entity.pricing.lower_price,
                    "last_sale": entity.pricing.last_sale,
                    "in_sale": entity.pricing.in_sale,
                    "available_count": entity.pricing.available_count,
                    "first_seen_at": entity.metadata.first_seen_at,
                    "last_updated_at": entity.metadata.last_updated_at,
                    "pricing_updated_at": entity.metadata.pricing_updated_at,
                    "change_type": entity.metadata.change_type.value if entity.metadata.change_type else None,
                    "history_len": len(entity.metadata.price_history),
                    "source_file": path.name,
                }
                for key in ("card_set", "rarity", "card_type", "main_cost", "recall_cost",
                            "forest_power", "mountain_power", "ocean_power"):
                    row[key] = entity.attributes.get(key)
                rows.append(row)
        return pd.DataFrame(rows, columns=FRAME_COLUMNS)

    def export_csv(self, target: Path) -> int:
        df = self.load_frame()
        target = Path(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(target, index=False, encoding="utf-8-sig")
        logger.info("Exported %d cards to %s", len(df), target)
        return len(df)
