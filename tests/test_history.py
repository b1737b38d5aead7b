"""Unit tests for altmirror.sync.history."""

from altmirror.sync.history import MAX_PRICE_HISTORY, append_price_history, snapshot_from_pricing
from altmirror.sync.models import CatalogEntity, Pricing


class TestPriceHistory:
    def test_snapshot_copies_pricing(self):
        snap = snapshot_from_pricing(Pricing(1, 2, 3, 4), "2024-01-01T00:00:00Z")
        assert snap.date == "2024-01-01T00:00:00Z"
        assert snap.pricing == Pricing(1, 2, 3, 4)

    def test_append_to_tail(self):
        entity = CatalogEntity("A1")
        append_price_history(entity, snapshot_from_pricing(Pricing(lower_price=1), "d1"))
        append_price_history(entity, snapshot_from_pricing(Pricing(lower_price=2), "d2"))
        assert [e.date for e in entity.metadata.price_history] == ["d1", "d2"]

    def test_cap_drops_oldest(self):
        entity = CatalogEntity("A1")
        for i in range(MAX_PRICE_HISTORY + 5):
            append_price_history(entity, snapshot_from_pricing(Pricing(lower_price=i), f"d{i}"))
        history = entity.metadata.price_history
        assert len(history) == MAX_PRICE_HISTORY
        assert history[0].date == "d5"
        assert history[-1].date == f"d{MAX_PRICE_HISTORY + 4}"

    def test_cap_value(self):
        assert MAX_PRICE_HISTORY == 50
