from __future__ import annotations

from .models import CatalogEntity, PriceHistoryEntry, Pricing

MAX_PRICE_HISTORY = 50


def snapshot_from_pricing(pricing: Pricing, date: str) -> PriceHistoryEntry:
    return PriceHistoryEntry(
        date=date,
        lower_price=pricing.lower_price,
        last_sale=pricing.last_sale,
        in_sale=pricing.in_sale,
        available_count=pricing.available_count,
    )


def append_price_history(entity: CatalogEntity, snapshot: PriceHistoryEntry) -> None:
    """Append at the tail, dropping the oldest entries past the cap (FIFO)."""
    history = entity.metadata.price_history
    history.append(snapshot)
    overflow = len(history) - MAX_PRICE_HISTORY
    if overflow > 0:
        del history[:overflow]
