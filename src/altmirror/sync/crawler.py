"""Sequential catalog crawl with checkpointed progress.

For every facet combination not yet processed:

* list the matching cards (all pages) and their marketplace stats;
* skip cards already collected in this run;
* rebuild cards already present in the local store from the list item plus
  stats pricing, without a detail request;
* fetch the detail of every other card.

Progress is checkpointed every ``checkpoint_every`` combinations, after a
failed combination and at the end.  Once every combination is processed the
collected cards are merged, grouping by grouping, into the card store.
"""

from __future__ import annotations

import datetime as dt
import random
import time
from collections import OrderedDict
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..config.settings import CrawlConfig
from ..errors import CatalogRequestError, MalformedRecordError, RateLimitExceeded
from ..ingestion.client import CatalogClient
from ..ingestion.facets import FilterCombination, enumerate_combinations
from ..ingestion.parse import CARD_PATH_PREFIX, entity_from_payload
from ..storage.checkpoint import CheckpointStore
from ..storage.repository import GroupedRepository
from ..utils.logging import get_logger
from .identity import AliasIndex, resolve
from .merge import merge_grouping
from .models import CatalogEntity, ChangeType, CheckpointState, Pricing, RunSummary

logger = get_logger(__name__)


def now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class _LocalGrouping:
    """Store entities of one grouping file, indexed by alias."""

    def __init__(self, entities: List[CatalogEntity]) -> None:
        self.by_id = {e.canonical_id: e for e in entities}
        self.index = AliasIndex.build(entities)

    def lookup(self, record: CatalogEntity) -> Optional[CatalogEntity]:
        canonical_id = resolve(record, self.index)
        return self.by_id.get(canonical_id) if canonical_id else None


class CatalogCrawler:
    def __init__(
        self,
        client: CatalogClient,
        checkpoints: CheckpointStore,
        repository: GroupedRepository,
        config: Optional[CrawlConfig] = None,
        clock: Callable[[], str] = now_iso,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.client = client
        self.checkpoints = checkpoints
        self.repository = repository
        self.config = config or CrawlConfig()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._run_index = AliasIndex()
        self._local_cache: Dict[Path, _LocalGrouping] = {}

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------
    def run(
        self,
        combinations: Optional[Iterable[FilterCombination]] = None,
        resume: bool = True,
        detect_sold: Optional[bool] = None,
        max_combinations: Optional[int] = None,
    ) -> RunSummary:
        """Crawl ``combinations`` (the full facet space when None).

        Sold detection defaults to on only for full-space runs: a partial run
        cannot tell a sold card from one it never queried.  With
        ``max_combinations`` the run stops after that many new combinations,
        saves a checkpoint and skips the final merge; a later resumed run
        picks up from there.
        """
        full_space = combinations is None
        if full_space:
            combos = list(enumerate_combinations(self.config.include_ocean_power))
        else:
            combos = list(combinations)
        if detect_sold is None:
            detect_sold = full_space

        state = self._start_state([c.key for c in combos], resume)
        summary = state.summary
        self._run_index = AliasIndex.build(state.entities.values())
        self._local_cache = {}

        remaining = len(combos) - len(state.processed_keys)
        logger.info(
            "Starting crawl: %d combinations, %d already processed, %d remaining",
            len(combos), len(state.processed_keys), remaining,
        )

        budget = max_combinations
        for position, combination in enumerate(combos, start=1):
            key = combination.key
            if key in state.processed_keys:
                continue
            if budget is not None and budget <= 0:
                logger.info("Combination budget exhausted, stopping before %s", key)
                self._save(state)
                return summary

            try:
                self._process_combination(combination, state, position, len(combos))
            except CatalogRequestError as exc:
                message = f"Failed to process combination {position} ({key}): {exc}"
                logger.error(message)
                summary.errors.append(message)
                if isinstance(exc, RateLimitExceeded):
                    logger.warning(
                        "Rate limited on combination request, waiting %.0fs before continuing",
                        self.config.combination_rate_limit_cooldown,
                    )
                    self._sleep(self.config.combination_rate_limit_cooldown)
                self._save(state)
                continue
            finally:
                if budget is not None:
                    budget -= 1

            state.processed_keys.add(key)
            summary.processed_combinations = len(state.processed_keys)
            summary.unique_entities = len(state.entities)
            if summary.processed_combinations % self.config.checkpoint_every == 0:
                self._save(state)
            self._polite_sleep(self.config.combination_delay)

        failed = [c.key for c in combos if c.key not in state.processed_keys]
        if detect_sold and failed:
            logger.warning(
                "%d combinations failed; sold detection is off until a resumed run covers them",
                len(failed),
            )
            detect_sold = False

        summary.end_time = self._clock()
        self.flush(state, detect_sold)
        self._save(state)
        logger.info("Crawl completed. Found %d unique cards.", len(state.entities))
        return summary

    # ------------------------------------------------------------------
    # Crawl steps
    # ------------------------------------------------------------------
    def _start_state(self, keys: List[str], resume: bool) -> CheckpointState:
        state = CheckpointState()
        if not resume:
            self.checkpoints.clear()
        else:
            loaded = self.checkpoints.load()
            if not loaded.is_empty():
                valid = set(keys)
                unknown = loaded.processed_keys - valid
                if unknown:
                    logger.warning("Dropping %d checkpoint keys outside the facet space", len(unknown))
                    loaded.processed_keys -= unknown
                if loaded.summary.end_time and valid <= loaded.processed_keys:
                    logger.info("Previous run already completed, starting a fresh run")
                else:
                    state = loaded
                    state.summary.resumed_from_checkpoint = True
                    logger.info("Resuming from checkpoint with %d cards already collected", len(state.entities))

        state.summary.total_combinations = len(keys)
        state.summary.processed_combinations = len(state.processed_keys)
        state.summary.unique_entities = len(state.entities)
        if not state.summary.start_time:
            state.summary.start_time = self._clock()
        return state

    def _process_combination(
        self,
        combination: FilterCombination,
        state: CheckpointState,
        position: int,
        total: int,
    ) -> None:
        logger.info("Processing combination %d/%d: %s", position, total, combination.key)
        cards = self.client.fetch_list(combination)
        stats = self.client.fetch_stats(combination) if cards else {}
        state.summary.found += len(cards)
        logger.info("  Found %d cards in this combination", len(cards))

        for card in cards:
            try:
                listed = entity_from_payload(card)
            except MalformedRecordError as exc:
                logger.warning("  Skipping malformed list item: %s", exc)
                continue
            if resolve(listed, self._run_index) is not None:
                continue

            pricing = stats.get(listed.path_id or f"{CARD_PATH_PREFIX}{listed.canonical_id}")
            if pricing is not None and self._known_locally(listed):
                self._collect(state, entity_from_payload(card, pricing=pricing))
                continue

            record = self._fetch_detail(listed, pricing, state)
            if record is not None:
                self._collect(state, record)
                logger.info("    Added card: %s (%s)", record.name, record.canonical_id)

    def _fetch_detail(
        self,
        listed: CatalogEntity,
        pricing: Optional[Pricing],
        state: CheckpointState,
    ) -> Optional[CatalogEntity]:
        summary = state.summary
        try:
            detail = self.client.fetch_detail(listed.path_id or listed.canonical_id)
            record = entity_from_payload(detail, pricing=pricing)
        except CatalogRequestError as exc:
            message = f"Failed to fetch detail for card {listed.canonical_id} (@id: {listed.path_id}): {exc}"
            logger.error("    %s", message)
            summary.errors.append(message)
            state.skipped_groupings.add(listed.grouping_key)
            if isinstance(exc, RateLimitExceeded):
                logger.warning(
                    "Rate limit error on card detail, waiting %.0fs before continuing",
                    self.config.detail_rate_limit_cooldown,
                )
                self._sleep(self.config.detail_rate_limit_cooldown)
            return None
        except MalformedRecordError as exc:
            message = f"Malformed detail for card {listed.canonical_id}: {exc}"
            logger.warning("    %s", message)
            summary.errors.append(message)
            state.skipped_groupings.add(listed.grouping_key)
            return None
        finally:
            self._polite_sleep(self.config.detail_delay)
        return record

    def _collect(self, state: CheckpointState, record: CatalogEntity) -> None:
        state.entities[record.canonical_id] = record
        self._run_index.add(record)

    def _known_locally(self, record: CatalogEntity) -> bool:
        path = self.repository.path_for(record.grouping_key)
        grouping = self._local_cache.get(path)
        if grouping is None:
            grouping = _LocalGrouping(self.repository.read_file(path))
            self._local_cache[path] = grouping
        return grouping.lookup(record) is not None

    def _polite_sleep(self, bounds: Tuple[float, float]) -> None:
        low, high = bounds
        if high <= 0:
            return
        self._sleep(self._rng.uniform(low, high))

    def _save(self, state: CheckpointState) -> None:
        state.summary.processed_combinations = len(state.processed_keys)
        state.summary.unique_entities = len(state.entities)
        self.checkpoints.save(state)

    # ------------------------------------------------------------------
    # Final merge into the card store
    # ------------------------------------------------------------------
    def flush(self, state: CheckpointState, detect_sold: bool) -> Dict[ChangeType, int]:
        """Merge the collected cards into the store, one grouping file at a time.

        Groupings where a card detail could not be fetched keep their cards
        out of sold detection: a failed request says nothing about the market.
        """
        now = self._clock()
        summary = state.summary
        totals = {change: 0 for change in ChangeType}
        incomplete = {self.repository.path_for(g) for g in state.skipped_groupings}
        if detect_sold and incomplete:
            logger.warning("Sold detection skipped for %d groupings with failed card details", len(incomplete))

        groups: "OrderedDict[Path, List[CatalogEntity]]" = OrderedDict()
        for entity in state.entities.values():
            groups.setdefault(self.repository.path_for(entity.grouping_key), []).append(entity)

        targets: List[Tuple[Path, List[CatalogEntity]]] = list(groups.items())
        if detect_sold:
            targets.extend((path, []) for path in self.repository.iter_files() if path not in groups)

        written = 0
        conflicts = 0
        for path, incoming in targets:
            existing = self.repository.read_file(path)
            result = merge_grouping(incoming, existing, now, detect_sold=detect_sold and path not in incomplete)
            conflicts += result.conflicts
            for change, count in result.counts.items():
                totals[change] += count
            if not result.changed:
                continue
            try:
                self.repository.write_file(path, result.entities)
                written += 1
            except OSError as exc:
                message = f"Failed to write {path.name}: {exc}"
                logger.error(message)
                summary.errors.append(message)

        summary.new = totals[ChangeType.NEW]
        summary.pricing_changed = totals[ChangeType.PRICING_CHANGED]
        summary.unchanged = totals[ChangeType.UNCHANGED]
        summary.sold = totals[ChangeType.SOLD]
        summary.alias_conflicts = conflicts
        logger.info(
            "Store updated: %d files written, %d new, %d pricing changed, %d unchanged, %d sold",
            written, summary.new, summary.pricing_changed, summary.unchanged, summary.sold,
        )
        return totals


def format_summary(summary: RunSummary, max_errors: int = 10) -> str:
    lines = [
        "=== Scrape Summary ===",
        f"Total combinations processed: {summary.processed_combinations}/{summary.total_combinations}",
        f"Cards found: {summary.found}",
        f"Unique cards: {summary.unique_entities}",
        f"New: {summary.new}",
        f"Pricing changed: {summary.pricing_changed}",
        f"Unchanged: {summary.unchanged}",
        f"Sold: {summary.sold}",
        f"Errors encountered: {len(summary.errors)}",
    ]
    if summary.alias_conflicts:
        lines.append(f"Alias conflicts: {summary.alias_conflicts}")
    if summary.resumed_from_checkpoint:
        lines.append("Resumed from checkpoint: yes")
    if summary.errors:
        lines.append("")
        lines.append("Errors:")
        lines.extend(f"  - {error}" for error in summary.errors[:max_errors])
        if len(summary.errors) > max_errors:
            lines.append(f"  ... and {len(summary.errors) - max_errors} more errors")
    return "\n".join(lines)
