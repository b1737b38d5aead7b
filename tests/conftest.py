"""Shared fixtures for the altmirror test suite."""

import sys
from pathlib import Path

import pytest

# Ensure src/ is on the path so "import altmirror" works when running from repo root.
repo_root = Path(__file__).resolve().parents[1]
src_path = repo_root / "src"
for p in (src_path, repo_root):
    p_str = str(p)
    if p_str not in sys.path:
        sys.path.insert(0, p_str)

# Reconfigure stdout/stderr for consoles without UTF-8.
try:
    sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    sys.stderr.reconfigure(encoding="utf-8", errors="replace")
except Exception:
    pass

from altmirror.errors import CatalogRequestError  # noqa: E402
from altmirror.ingestion.parse import entity_from_payload  # noqa: E402
from altmirror.storage.checkpoint import CheckpointStore  # noqa: E402
from altmirror.storage.repository import GroupedRepository  # noqa: E402
from altmirror.sync.models import Pricing  # noqa: E402


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------

def api_card(card_id, name="Sierra", faction="AX", lower_price=None, **extra):
    """A card as the ``/cards`` endpoint returns it (list item or detail)."""
    card = {
        "@id": f"/cards/{card_id}",
        "id": card_id,
        "reference": card_id,
        "name": name,
        "mainFaction": {"reference": faction, "name": faction},
        "cardSet": {"reference": "CORE"},
        "rarity": {"reference": "UNIQUE"},
        "cardType": {"reference": "CHARACTER"},
        "elements": {
            "MAIN_COST": "3",
            "RECALL_COST": "2",
            "FOREST_POWER": "1",
            "MOUNTAIN_POWER": "2",
            "OCEAN_POWER": "0",
        },
    }
    if lower_price is not None:
        card["lowerPrice"] = lower_price
    card.update(extra)
    return card


def make_entity(card_id, name="Sierra", faction="AX", pricing=None, **extra):
    return entity_from_payload(api_card(card_id, name=name, faction=faction, **extra), pricing=pricing)


class FakeClient:
    """In-memory stand-in for CatalogClient.

    ``lists`` maps combination keys to card payloads, ``stats`` maps ``@id``
    to Pricing, ``details`` maps card ids to detail payloads.  ``fail_lists``
    and ``fail_details`` map keys/ids to exceptions raised instead.
    """

    def __init__(self, lists=None, stats=None, details=None):
        self.lists = lists or {}
        self.stats = stats or {}
        self.details = details or {}
        self.fail_lists = {}
        self.fail_details = {}
        self.list_calls = []
        self.detail_calls = []

    def fetch_list(self, combination):
        self.list_calls.append(combination.key)
        if combination.key in self.fail_lists:
            raise self.fail_lists[combination.key]
        return [dict(c) for c in self.lists.get(combination.key, [])]

    def fetch_stats(self, combination):
        refs = {c.get("@id") for c in self.lists.get(combination.key, [])}
        return {ref: p for ref, p in self.stats.items() if ref in refs}

    def fetch_detail(self, entity_ref):
        card_id = entity_ref.rsplit("/", 1)[-1]
        self.detail_calls.append(card_id)
        if card_id in self.fail_details:
            raise self.fail_details[card_id]
        if card_id not in self.details:
            raise CatalogRequestError(f"HTTP 404 for /cards/{card_id}", status=404)
        return dict(self.details[card_id])


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def repository(tmp_path):
    return GroupedRepository(tmp_path / "card_db")


@pytest.fixture
def checkpoint_store(tmp_path):
    return CheckpointStore(tmp_path / "checkpoints_db", "scrape")


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def sample_pricing():
    return Pricing(lower_price=10, last_sale=9, in_sale=2, available_count=3)
