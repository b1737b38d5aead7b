"""Facet domain of the Altered marketplace catalog.

Each axis lists the values the ``/cards`` endpoint accepts for the matching
``<param>[]`` query parameter.  The crawl enumerates the cartesian product of
these axes, so every tuple must stay in a fixed order: checkpoint keys depend
on it.
"""

CARD_SETS = ("CORE", "ALIZE")
FACTIONS = ("AX", "BR", "LY", "MU", "OR", "YZ")
COSTS = tuple(range(1, 11))
POWERS = tuple(range(0, 11))

DEFAULT_RARITY = ("UNIQUE",)

# Axis name -> domain values, in enumeration order (outermost first).
FACET_DOMAIN = {
    "card_sets": CARD_SETS,
    "factions": FACTIONS,
    "main_costs": COSTS,
    "recall_costs": COSTS,
    "forest_powers": POWERS,
    "mountain_powers": POWERS,
    "ocean_powers": POWERS,
}

# Axis name -> query parameter name on the remote API.
FACET_PARAMS = {
    "card_sets": "cardSet[]",
    "factions": "factions[]",
    "main_costs": "mainCost[]",
    "recall_costs": "recallCost[]",
    "forest_powers": "forestPower[]",
    "mountain_powers": "mountainPower[]",
    "ocean_powers": "oceanPower[]",
}

FACET_AXES = tuple(FACET_DOMAIN)
