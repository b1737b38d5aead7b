"""Resumable crawl progress.

Two files per checkpoint prefix::

    <prefix>-checkpoint.json   processed combination keys, skipped groupings, run summary
    <prefix>-entities.jsonl    entity snapshot, one per line

Saves are deterministic (sorted keys, sorted entities, no wall-clock stamp),
so saving the same in-memory state twice yields identical files.  Loading
never raises: a missing or corrupt checkpoint means a fresh run.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Set, Tuple

from ..config.settings import CHECKPOINT_DIR, CHECKPOINT_PREFIX
from ..sync.models import CheckpointState, RunSummary
from ..utils.logging import get_logger
from .repository import read_jsonl_entities, write_jsonl_entities

logger = get_logger(__name__)


def _parse_groupings(value) -> Set[Tuple[str, str]]:
    if value is None:
        return set()
    if not isinstance(value, list):
        raise ValueError("skippedGroupings is not a list")
    groupings = set()
    for item in value:
        if not (isinstance(item, list) and len(item) == 2):
            raise ValueError(f"bad grouping entry: {item!r}")
        groupings.add((str(item[0]), str(item[1])))
    return groupings


class CheckpointStore:
    def __init__(self, directory: Path = CHECKPOINT_DIR, prefix: str = CHECKPOINT_PREFIX) -> None:
        self.directory = Path(directory)
        self.prefix = prefix

    @property
    def checkpoint_path(self) -> Path:
        return self.directory / f"{self.prefix}-checkpoint.json"

    @property
    def entities_path(self) -> Path:
        return self.directory / f"{self.prefix}-entities.jsonl"

    def exists(self) -> bool:
        return self.checkpoint_path.exists()

    def load(self) -> CheckpointState:
        if not self.checkpoint_path.exists():
            return CheckpointState()

        try:
            data = json.loads(self.checkpoint_path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("checkpoint root is not an object")
            keys = data.get("processedCombinations") or []
            if not isinstance(keys, list):
                raise ValueError("processedCombinations is not a list")
            processed = {str(k) for k in keys}
            summary = RunSummary.from_dict(data.get("summary"))
            skipped = _parse_groupings(data.get("skippedGroupings"))
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Failed to load checkpoint %s: %s. Starting fresh.", self.checkpoint_path.name, exc)
            return CheckpointState()

        entities = {}
        for entity in read_jsonl_entities(self.entities_path):
            entities[entity.canonical_id] = entity

        logger.info(
            "Loaded checkpoint: %d combinations processed, %d cards collected",
            len(processed), len(entities),
        )
        return CheckpointState(
            processed_keys=processed, entities=entities, summary=summary, skipped_groupings=skipped,
        )

    def save(self, state: CheckpointState) -> bool:
        """Persist ``state``; failures are logged and reported as False.

        The entity snapshot is written before the processed keys, so a
        failure in between never leaves keys on disk whose cards are missing.
        """
        payload = {
            "processedCombinations": sorted(state.processed_keys),
            "skippedGroupings": sorted([list(g) for g in state.skipped_groupings]),
            "summary": state.summary.to_dict(),
        }
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            ordered = [state.entities[k] for k in sorted(state.entities)]
            write_jsonl_entities(self.entities_path, ordered)
            tmp_path = self.checkpoint_path.with_name(self.checkpoint_path.name + ".tmp")
            tmp_path.write_text(
                json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n",
                encoding="utf-8",
            )
            os.replace(tmp_path, self.checkpoint_path)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to save checkpoint: %s", exc)
            return False

        logger.info(
            "Checkpoint saved: %d combinations, %d cards",
            len(state.processed_keys), len(state.entities),
        )
        return True

    def clear(self) -> None:
        for path in (self.checkpoint_path, self.entities_path):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
