from __future__ import annotations

from typing import Any, Dict, Optional

from ..errors import MalformedRecordError
from ..sync.models import ELEMENT_ATTRIBUTES, CatalogEntity, Pricing, ScrapeMetadata, to_number

CARD_PATH_PREFIX = "/cards/"

# Keys rebuilt from typed fields on serialization; everything else is kept as-is.
_MANAGED_KEYS = {"id", "reference", "@id", "name", "pricing", "lowerPrice", "scrapeMetadata"}


def extract_card_id(id_or_path: str) -> str:
    """``/cards/ALT_X`` -> ``ALT_X``; plain ids pass through."""
    value = (id_or_path or "").strip()
    if value.startswith(CARD_PATH_PREFIX):
        return value[len(CARD_PATH_PREFIX):]
    return value


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _reference_of(data: Dict[str, Any], key: str) -> Optional[str]:
    nested = data.get(key)
    if isinstance(nested, dict):
        return _clean(nested.get("reference"))
    return _clean(nested)


def _pricing_of(data: Dict[str, Any]) -> Pricing:
    nested = data.get("pricing")
    if isinstance(nested, dict):
        return Pricing.from_dict(nested)
    if data.get("lowerPrice") is not None:
        return Pricing(lower_price=to_number(data.get("lowerPrice")))
    return Pricing()


def parse_attributes(data: Dict[str, Any]) -> Dict[str, Any]:
    elements = data.get("elements") if isinstance(data.get("elements"), dict) else {}
    attributes: Dict[str, Any] = {
        "card_set": _reference_of(data, "cardSet"),
        "rarity": _reference_of(data, "rarity"),
        "card_type": _reference_of(data, "cardType"),
    }
    for attr, key in ELEMENT_ATTRIBUTES.items():
        attributes[attr] = to_number(elements.get(key))
    return attributes


def entity_from_payload(data: Dict[str, Any], pricing: Optional[Pricing] = None) -> CatalogEntity:
    """Build an entity from an API card (list item or detail) or a persisted line.

    ``pricing`` overrides whatever pricing the payload carries, which is how
    ``/cards/stats`` figures are attached to list items.

    Raises :class:`MalformedRecordError` when the payload has no identity
    field at all.
    """
    if not isinstance(data, dict):
        raise MalformedRecordError(f"expected an object, got {type(data).__name__}")

    card_id = _clean(data.get("id"))
    reference = _clean(data.get("reference"))
    path_id = _clean(data.get("@id"))
    canonical = card_id or reference or (extract_card_id(path_id) if path_id else None)
    if not canonical:
        raise MalformedRecordError("card has no id, reference or @id")

    try:
        metadata = ScrapeMetadata.from_dict(data.get("scrapeMetadata"))
        if pricing is None:
            pricing = _pricing_of(data)
        attributes = parse_attributes(data)
    except (ValueError, TypeError) as exc:
        raise MalformedRecordError(f"card {canonical}: {exc}") from exc

    raw = {k: v for k, v in data.items() if k not in _MANAGED_KEYS}
    return CatalogEntity(
        canonical_id=canonical,
        reference=reference,
        path_id=path_id,
        name=_clean(data.get("name")) or "",
        faction=_reference_of(data, "mainFaction") or "",
        attributes=attributes,
        pricing=pricing,
        metadata=metadata,
        raw=raw,
    )


def pricing_from_stat(item: Dict[str, Any]) -> Pricing:
    return Pricing.from_dict(item)
