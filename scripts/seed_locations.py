from __future__ import annotations

import argparse

from treasurehunt.catalog.loader import load_locations, seed_store
from treasurehunt.config.settings import get_settings
from treasurehunt.core.logging import configure_logging
from treasurehunt.store import build_store


def main(argv: list[str] | None = None) -> int:
    """Seed the configured store (usually PocketBase) from a location catalog."""
    parser = argparse.ArgumentParser(description="Seed treasure locations into the configured store.")
    parser.add_argument("catalog", nargs="?", default="data/locations.sample.json")
    parser.add_argument("--backend", choices=["memory", "pocketbase"], default=None)
    args = parser.parse_args(argv)

    settings = get_settings()
    if args.backend:
        settings = settings.model_copy(update={"store": settings.store.model_copy(update={"backend": args.backend})})
    configure_logging(settings)

    locations = load_locations(args.catalog)
    store = build_store(settings)
    id_map = seed_store(store, locations)

    for catalog_id, stored_id in id_map.items():
        print(f"{catalog_id} -> {stored_id}")
    print("Seeded locations:", len(id_map))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
