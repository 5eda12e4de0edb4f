"""
Location catalog loader.

The catalog is a local JSON file (default: `data/locations.sample.json`) listing
treasure locations with coordinates, winnings and team requirements. It is used
to seed a store for local play and demos. Entries may chain to each other via
`next_location_id`, using the catalog's own ids.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import TypeAdapter

from treasurehunt.core.env import resolve_project_path
from treasurehunt.domain.models import Location, LocationDraft, LocationUpdate
from treasurehunt.store.base import TreasureStore
from treasurehunt.store.memory import InMemoryStore

logger = logging.getLogger(__name__)

_LOCATIONS_ADAPTER = TypeAdapter(list[Location])


def load_locations(path: str | Path) -> list[Location]:
    """Load and validate a location catalog JSON file."""
    resolved = resolve_project_path(path)
    payload = json.loads(resolved.read_text(encoding="utf-8"))
    return _LOCATIONS_ADAPTER.validate_python(payload)


def seed_store(store: TreasureStore, locations: list[Location], keep_ids: bool | None = None) -> dict[str, str]:
    """Insert catalog locations into `store`; return catalog id -> stored id.

    The in-memory store keeps catalog ids (`keep_ids` defaults to that). Other
    backends assign their own ids, so chain links are rewritten in a second pass
    once every location exists.
    """
    if keep_ids is None:
        keep_ids = isinstance(store, InMemoryStore)
    if keep_ids and isinstance(store, InMemoryStore):
        for loc in locations:
            store.add_location(loc)
        id_map = {loc.id: loc.id for loc in locations}
    else:
        id_map = {}
        for loc in locations:
            created = store.create_location(
                LocationDraft(
                    name=loc.name,
                    point=loc.point,
                    active=False,
                    winning_amount=loc.winning_amount,
                    minimum_team_size=loc.minimum_team_size,
                )
            )
            id_map[loc.id] = created.id
        for loc in locations:
            if loc.next_location_id:
                store.update_location(
                    id_map[loc.id],
                    LocationUpdate(next_location_id=id_map.get(loc.next_location_id, loc.next_location_id)),
                )
        # One active location at a time: the last active entry wins.
        active = [loc for loc in locations if loc.active]
        if active:
            store.set_active_location(id_map[active[-1].id])

    logger.info("Seeded %s locations", len(locations))
    return id_map
