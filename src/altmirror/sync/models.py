"""Domain types shared by the crawl, the merge engine and the stores.

Entities serialize to the camelCase layout of the Altered ``/cards/{id}``
payload so persisted groupings stay readable next to raw API responses::

    {"id": "ALT_CORE_B_AX_04_U_123", "reference": "...", "@id": "/cards/...",
     "name": "...", "mainFaction": {"reference": "AX"}, "elements": {...},
     "pricing": {"lowerPrice": 10.0, ...}, "scrapeMetadata": {...}}
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

PRICING_FIELDS = ("lower_price", "last_sale", "in_sale", "available_count")

_PRICING_WIRE = {
    "lower_price": "lowerPrice",
    "last_sale": "lastSale",
    "in_sale": "inSale",
    "available_count": "numberCopyAvailable",
}

# Attribute name -> key inside the API "elements" object.
ELEMENT_ATTRIBUTES = {
    "main_cost": "MAIN_COST",
    "recall_cost": "RECALL_COST",
    "forest_power": "FOREST_POWER",
    "mountain_power": "MOUNTAIN_POWER",
    "ocean_power": "OCEAN_POWER",
}


class ChangeType(str, Enum):
    NEW = "new"
    PRICING_CHANGED = "pricing_changed"
    UNCHANGED = "unchanged"
    SOLD = "sold"


def to_number(value: Any) -> Optional[float]:
    """Numeric value or None; NaN and infinities count as absent."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    try:
        text = str(value).strip()
        if not text:
            return None
        num = float(text)
    except ValueError:
        return None
    if not math.isfinite(num):
        return None
    return int(num) if num.is_integer() else num


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _require_dict(data: Any, what: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"{what} is not an object: {type(data).__name__}")
    return data


@dataclass(frozen=True)
class Pricing:
    lower_price: Optional[float] = None
    last_sale: Optional[float] = None
    in_sale: Optional[int] = None
    available_count: Optional[int] = None

    def has_signal(self) -> bool:
        """True when at least one field carries a non-zero value."""
        return any(getattr(self, name) not in (None, 0) for name in PRICING_FIELDS)

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in PRICING_FIELDS)

    def to_dict(self) -> Dict[str, Any]:
        return {wire: getattr(self, name) for name, wire in _PRICING_WIRE.items()}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Pricing":
        if not data:
            return cls()
        data = _require_dict(data, "pricing")
        return cls(**{name: to_number(data.get(wire)) for name, wire in _PRICING_WIRE.items()})


@dataclass(frozen=True)
class PriceHistoryEntry:
    date: str
    lower_price: Optional[float] = None
    last_sale: Optional[float] = None
    in_sale: Optional[int] = None
    available_count: Optional[int] = None

    @property
    def pricing(self) -> Pricing:
        return Pricing(self.lower_price, self.last_sale, self.in_sale, self.available_count)

    def to_dict(self) -> Dict[str, Any]:
        data = {"date": self.date}
        data.update(self.pricing.to_dict())
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PriceHistoryEntry":
        pricing = Pricing.from_dict(data)
        return cls(
            date=str(data.get("date") or ""),
            lower_price=pricing.lower_price,
            last_sale=pricing.last_sale,
            in_sale=pricing.in_sale,
            available_count=pricing.available_count,
        )


@dataclass
class ScrapeMetadata:
    first_seen_at: Optional[str] = None
    last_updated_at: Optional[str] = None
    pricing_updated_at: Optional[str] = None
    change_type: Optional[ChangeType] = None
    price_history: List[PriceHistoryEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "firstScrapedAt": self.first_seen_at,
            "lastUpdatedAt": self.last_updated_at,
            "pricingLastUpdatedAt": self.pricing_updated_at,
            "changeType": self.change_type.value if self.change_type else None,
            "priceHistory": [entry.to_dict() for entry in self.price_history],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScrapeMetadata":
        if not data:
            return cls()
        data = _require_dict(data, "scrapeMetadata")
        entries = data.get("priceHistory") or []
        if not isinstance(entries, list):
            raise ValueError("priceHistory is not a list")
        history = [PriceHistoryEntry.from_dict(entry) for entry in entries if isinstance(entry, dict)]
        change = data.get("changeType")
        if not isinstance(change, str):
            change = None
        return cls(
            first_seen_at=data.get("firstScrapedAt"),
            last_updated_at=data.get("lastUpdatedAt"),
            pricing_updated_at=data.get("pricingLastUpdatedAt"),
            change_type=ChangeType(change) if change in ChangeType._value2member_map_ else None,
            price_history=history,
        )


@dataclass
class CatalogEntity:
    canonical_id: str
    reference: Optional[str] = None
    path_id: Optional[str] = None
    name: str = ""
    faction: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)
    pricing: Pricing = field(default_factory=Pricing)
    metadata: ScrapeMetadata = field(default_factory=ScrapeMetadata)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def aliases(self) -> Tuple[str, ...]:
        return tuple(a for a in (self.canonical_id, self.reference, self.path_id) if a)

    @property
    def grouping_key(self) -> Tuple[str, str]:
        return (self.name, self.faction)

    @property
    def is_sold(self) -> bool:
        return self.metadata.change_type == ChangeType.SOLD

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.raw)
        data.update({
            "id": self.canonical_id,
            "reference": self.reference,
            "@id": self.path_id,
            "name": self.name,
            "mainFaction": dict(_as_dict(data.get("mainFaction")), reference=self.faction),
            "cardSet": dict(_as_dict(data.get("cardSet")), reference=self.attributes.get("card_set")),
            "rarity": dict(_as_dict(data.get("rarity")), reference=self.attributes.get("rarity")),
            "cardType": dict(_as_dict(data.get("cardType")), reference=self.attributes.get("card_type")),
        })
        elements = dict(_as_dict(data.get("elements")))
        for attr, key in ELEMENT_ATTRIBUTES.items():
            if self.attributes.get(attr) is not None:
                elements[key] = str(self.attributes[attr])
        data["elements"] = elements
        data["pricing"] = self.pricing.to_dict()
        data["lowerPrice"] = self.pricing.lower_price
        data["scrapeMetadata"] = self.metadata.to_dict()
        return data


@dataclass
class RunSummary:
    total_combinations: int = 0
    processed_combinations: int = 0
    unique_entities: int = 0
    found: int = 0
    new: int = 0
    pricing_changed: int = 0
    unchanged: int = 0
    sold: int = 0
    alias_conflicts: int = 0
    errors: List[str] = field(default_factory=list)
    start_time: str = ""
    end_time: str = ""
    resumed_from_checkpoint: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalCombinations": self.total_combinations,
            "processedCombinations": self.processed_combinations,
            "uniqueCards": self.unique_entities,
            "found": self.found,
            "new": self.new,
            "pricingChanged": self.pricing_changed,
            "unchanged": self.unchanged,
            "sold": self.sold,
            "aliasConflicts": self.alias_conflicts,
            "errors": list(self.errors),
            "startTime": self.start_time,
            "endTime": self.end_time,
            "resumedFromCheckpoint": self.resumed_from_checkpoint,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RunSummary":
        if not data:
            return cls()
        data = _require_dict(data, "summary")
        errors = data.get("errors") or []
        if not isinstance(errors, list):
            raise ValueError("summary errors is not a list")
        return cls(
            total_combinations=int(data.get("totalCombinations") or 0),
            processed_combinations=int(data.get("processedCombinations") or 0),
            unique_entities=int(data.get("uniqueCards") or 0),
            found=int(data.get("found") or 0),
            new=int(data.get("new") or 0),
            pricing_changed=int(data.get("pricingChanged") or 0),
            unchanged=int(data.get("unchanged") or 0),
            sold=int(data.get("sold") or 0),
            alias_conflicts=int(data.get("aliasConflicts") or 0),
            errors=[str(e) for e in errors],
            start_time=str(data.get("startTime") or ""),
            end_time=str(data.get("endTime") or ""),
            resumed_from_checkpoint=bool(data.get("resumedFromCheckpoint")),
        )


@dataclass
class CheckpointState:
    processed_keys: set = field(default_factory=set)
    entities: Dict[str, CatalogEntity] = field(default_factory=dict)
    summary: RunSummary = field(default_factory=RunSummary)
    # Groupings with a card whose detail fetch failed; never checked for sold cards.
    skipped_groupings: set = field(default_factory=set)

    def is_empty(self) -> bool:
        return not self.processed_keys and not self.entities
