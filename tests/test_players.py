import pytest

from treasurehunt.core.geo import GeoPoint
from treasurehunt.game.navigation import detect_platform, directions_links
from treasurehunt.game.players import fingerprint_from_traits, online_players, register_player, touch
from treasurehunt.store import InMemoryStore, StoreError


def test_fingerprint_is_stable_and_order_sensitive():
    assert fingerprint_from_traits({"a": "b"}) == "fp-21e1"

    traits = {"screen": "390x844", "lang": "en-IN", "tz": "Asia/Kolkata"}
    assert fingerprint_from_traits(traits) == fingerprint_from_traits(dict(traits))
    assert fingerprint_from_traits(traits) != fingerprint_from_traits(dict(reversed(list(traits.items()))))

    # Empty values do not contribute.
    assert fingerprint_from_traits({"a": "b", "gpu": ""}) == "fp-21e1"

    with pytest.raises(ValueError):
        fingerprint_from_traits({"gpu": ""})


def test_register_player_reuses_the_device_account():
    store = InMemoryStore()
    first = register_player(store, "fp-abc", "Asha")
    again = register_player(store, "fp-abc")

    assert again.id == first.id
    assert again.display_name == "Asha"
    assert register_player(store, "fp-other").id != first.id
    assert online_players(store, 120) == 2


def test_presence_helpers_swallow_store_failures():
    class _DownStore(InMemoryStore):
        def update_user_last_seen(self, user_id):
            raise StoreError("down")

        def get_online_players_count(self, window_seconds):
            raise StoreError("down")

    store = _DownStore()
    touch(store, "u1")
    assert online_players(store, 120) == 0

    # Unknown users are a StoreNotFound, which is still a StoreError.
    touch(InMemoryStore(), "missing")


def test_detect_platform_from_user_agent():
    assert detect_platform("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)") == "ios"
    assert detect_platform("Mozilla/5.0 (Linux; Android 14; Pixel 8)") == "android"
    assert detect_platform("Mozilla/5.0 (X11; Linux x86_64)") == "desktop"
    assert detect_platform(None) == "desktop"


def test_directions_links_per_platform():
    origin = GeoPoint(lat=21.85, lon=70.24)
    dest = GeoPoint(lat=21.86, lon=70.25)

    ios = directions_links(origin, dest, "ios")
    assert ios.primary.startswith("comgooglemaps://?saddr=21.85,70.24&daddr=21.86,70.25")
    assert ios.fallback.startswith("http://maps.apple.com/")

    android = directions_links(origin, dest, "android")
    assert android.primary == "google.navigation:q=21.86,70.25&mode=w"
    assert android.fallback.startswith("https://www.google.com/maps/dir/21.85,70.24/21.86,70.25/")

    desktop = directions_links(origin, dest)
    assert desktop.primary.endswith("data=!4m2!4m1!3e2")
    assert desktop.fallback is None
