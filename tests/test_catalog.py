from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from treasurehunt.catalog.loader import load_locations, seed_store
from treasurehunt.store import InMemoryStore

CATALOG = Path(__file__).resolve().parents[1] / "data" / "locations.sample.json"


def test_sample_catalog_loads_as_a_chain():
    locations = load_locations(CATALOG)

    assert [loc.id for loc in locations] == ["loc-lake-gate", "loc-clock-tower", "loc-old-well"]
    assert locations[0].active
    assert locations[1].minimum_team_size == 3
    assert locations[2].winning_amount == Decimal("75.50")
    assert locations[2].next_location_id is None


def test_seed_memory_store_keeps_catalog_ids():
    store = InMemoryStore()
    id_map = seed_store(store, load_locations(CATALOG))

    assert id_map == {k: k for k in ("loc-lake-gate", "loc-clock-tower", "loc-old-well")}
    assert store.get_active_location().id == "loc-lake-gate"
    assert store.get_location("loc-clock-tower").next_location_id == "loc-old-well"


def test_seed_remote_style_store_rewrites_chain_links():
    store = InMemoryStore()
    id_map = seed_store(store, load_locations(CATALOG), keep_ids=False)

    assert set(id_map) == {"loc-lake-gate", "loc-clock-tower", "loc-old-well"}
    assert all(new != old for old, new in id_map.items())

    gate = store.get_location(id_map["loc-lake-gate"])
    assert gate.next_location_id == id_map["loc-clock-tower"]
    assert store.get_active_location().id == gate.id
    assert store.get_location(id_map["loc-old-well"]).next_location_id is None


def test_invalid_catalog_is_rejected(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text('[{"id": "x", "point": {"lat": 95, "lon": 0}}]', encoding="utf-8")

    with pytest.raises(ValidationError):
        load_locations(path)
