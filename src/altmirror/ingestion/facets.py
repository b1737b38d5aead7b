"""Facet-combination enumeration for the catalog crawl.

The ``/cards`` endpoint caps a single query at 1000 items, so the crawl
splits the catalog into narrow queries: one per combination of card set,
faction, main cost, recall cost, forest power and mountain power.  The ocean
power axis is left out by default (the other axes are narrow enough) and can
be switched on with ``include_ocean_power``.

The sequence is a pure function of the domain constants: checkpoint files
store combination keys, so two runs must produce the same keys in the same
order.
"""

from __future__ import annotations

import itertools
import re
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..config.facets import DEFAULT_RARITY, FACET_AXES, FACET_DOMAIN, FACET_PARAMS
from ..config.settings import ITEMS_PER_PAGE

KEY_SEPARATOR = "-"
VALUE_SEPARATOR = ","
NONE_TOKEN = "none"

ENUMERATED_AXES = (
    "card_sets",
    "factions",
    "main_costs",
    "recall_costs",
    "forest_powers",
    "mountain_powers",
)


@dataclass(frozen=True)
class FilterCombination:
    """One catalog query: a tuple of values per facet axis."""

    card_sets: Tuple[str, ...] = ()
    factions: Tuple[str, ...] = ()
    main_costs: Tuple[int, ...] = ()
    recall_costs: Tuple[int, ...] = ()
    forest_powers: Tuple[int, ...] = ()
    mountain_powers: Tuple[int, ...] = ()
    ocean_powers: Tuple[int, ...] = ()
    name: Optional[str] = None
    rarity: Tuple[str, ...] = DEFAULT_RARITY
    in_sale: bool = True

    @property
    def key(self) -> str:
        parts = []
        for axis in FACET_AXES:
            values = getattr(self, axis)
            parts.append(VALUE_SEPARATOR.join(str(v) for v in values) if values else NONE_TOKEN)
        key = KEY_SEPARATOR.join(parts)
        if self.name:
            key += "~" + _slug(self.name)
        return key

    def to_params(self, locale: str, items_per_page: int = ITEMS_PER_PAGE) -> List[Tuple[str, str]]:
        """Query parameters for ``/cards`` and ``/cards/stats``.

        Returned as a list of pairs because array facets repeat their key.
        """
        params: List[Tuple[str, str]] = [("locale", locale), ("itemsPerPage", str(items_per_page))]
        if self.in_sale:
            params.append(("inSale", "true"))
        params.extend(("rarity[]", r) for r in self.rarity)
        for axis in FACET_AXES:
            params.extend((FACET_PARAMS[axis], str(v)) for v in getattr(self, axis))
        if self.name and self.name.strip():
            params.append(("translations.name", self.name.strip()))
        return params

    def describe(self) -> Dict[str, List]:
        data = {axis: list(getattr(self, axis)) for axis in FACET_AXES if getattr(self, axis)}
        if self.name:
            data["name"] = self.name
        return data


def _slug(text: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", text.strip())


def _axes(include_ocean_power: bool) -> Tuple[str, ...]:
    if include_ocean_power:
        return ENUMERATED_AXES + ("ocean_powers",)
    return ENUMERATED_AXES


def enumerate_combinations(
    include_ocean_power: bool = False,
    domain: Mapping[str, Sequence] = FACET_DOMAIN,
) -> Iterator[FilterCombination]:
    """Yield every single-valued combination, outermost axis first."""
    axes = _axes(include_ocean_power)
    for values in itertools.product(*(domain[axis] for axis in axes)):
        yield FilterCombination(**{axis: (value,) for axis, value in zip(axes, values)})


def combination_keys(
    include_ocean_power: bool = False,
    domain: Mapping[str, Sequence] = FACET_DOMAIN,
) -> List[str]:
    return [c.key for c in enumerate_combinations(include_ocean_power, domain)]


def count_combinations(
    include_ocean_power: bool = False,
    domain: Mapping[str, Sequence] = FACET_DOMAIN,
) -> int:
    total = 1
    for axis in _axes(include_ocean_power):
        total *= len(domain[axis])
    return total


def _as_tuple(values: Optional[Iterable]) -> Tuple:
    if values is None:
        return ()
    if isinstance(values, (str, int)):
        return (values,)
    return tuple(values)


def build_filter_combination(
    card_sets: Optional[Iterable[str]] = None,
    factions: Optional[Iterable[str]] = None,
    main_costs: Optional[Iterable[int]] = None,
    recall_costs: Optional[Iterable[int]] = None,
    forest_powers: Optional[Iterable[int]] = None,
    mountain_powers: Optional[Iterable[int]] = None,
    ocean_powers: Optional[Iterable[int]] = None,
    name: Optional[str] = None,
) -> FilterCombination:
    """Ad-hoc combination for a targeted scrape (several values per axis allowed)."""
    return FilterCombination(
        card_sets=tuple(s.upper() for s in _as_tuple(card_sets)),
        factions=tuple(f.upper() for f in _as_tuple(factions)),
        main_costs=tuple(int(v) for v in _as_tuple(main_costs)),
        recall_costs=tuple(int(v) for v in _as_tuple(recall_costs)),
        forest_powers=tuple(int(v) for v in _as_tuple(forest_powers)),
        mountain_powers=tuple(int(v) for v in _as_tuple(mountain_powers)),
        ocean_powers=tuple(int(v) for v in _as_tuple(ocean_powers)),
        name=(name or "").strip() or None,
    )
