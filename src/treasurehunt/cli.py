"""
Treasure hunt CLI entrypoint.

Quick geo checks, offline GPS track replay for tuning the smoother and geofence,
and a dev server.
"""

from __future__ import annotations

import argparse
import csv
import json
from pathlib import Path
from typing import Any

from treasurehunt.config.settings import get_settings
from treasurehunt.core.geo import GeoPoint, calculate_bearing, calculate_distance, format_distance, validate_point
from treasurehunt.core.logging import configure_logging
from treasurehunt.core.smoothing import GpsSample, LocationSmoother


def _parse_point(raw: str) -> GeoPoint:
    """Parse a `LAT,LON` argument."""
    parts = raw.split(",")
    if len(parts) != 2:
        raise argparse.ArgumentTypeError(f"Invalid point '{raw}', expected LAT,LON")
    try:
        return validate_point(GeoPoint(lat=float(parts[0]), lon=float(parts[1])))
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _cmd_distance(args: argparse.Namespace) -> int:
    meters = calculate_distance(args.a, args.b)
    if args.json:
        print(json.dumps({"meters": meters, "text": format_distance(meters)}))
    else:
        print(f"{meters:.2f} m ({format_distance(meters)})")
    return 0


def _cmd_bearing(args: argparse.Namespace) -> int:
    deg = calculate_bearing(args.a, args.b)
    if args.json:
        print(json.dumps({"degrees": deg}))
    else:
        print(f"{deg:.2f}")
    return 0


def _read_track(path: Path, missing_accuracy_m: float) -> list[GpsSample]:
    """Read a CSV track with header `lat,lon,accuracy_m,captured_at_ms`."""
    samples: list[GpsSample] = []
    with path.open(newline="", encoding="utf-8") as f:
        for i, row in enumerate(csv.DictReader(f), start=2):
            try:
                accuracy = (row.get("accuracy_m") or "").strip()
                samples.append(
                    GpsSample(
                        point=validate_point(GeoPoint(lat=float(row["lat"]), lon=float(row["lon"]))),
                        accuracy_m=float(accuracy) if accuracy else missing_accuracy_m,
                        captured_at_ms=int(row["captured_at_ms"]),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ValueError(f"{path}:{i}: invalid row ({e})") from e
    return samples


def _cmd_replay(args: argparse.Namespace) -> int:
    """Feed a recorded track through the smoother and report arrival per sample."""
    settings = get_settings()
    sm = settings.smoothing
    reach_m = float(args.reach) if args.reach is not None else settings.game.reach_distance_m
    smoother = LocationSmoother(sm.max_samples, sm.max_age_ms, sm.accuracy_scale_m)

    reached_at: int | None = None
    for sample in _read_track(Path(args.track), sm.missing_accuracy_m):
        smoothed = smoother.add(sample)
        meters = calculate_distance(smoothed, args.target)
        within = meters <= reach_m
        if within and reached_at is None:
            reached_at = sample.captured_at_ms
        if args.json:
            print(
                json.dumps(
                    {
                        "captured_at_ms": sample.captured_at_ms,
                        "lat": smoothed.lat,
                        "lon": smoothed.lon,
                        "distance_m": meters,
                        "within": within,
                    }
                )
            )
        else:
            flag = "REACHED" if within else ""
            print(f"{sample.captured_at_ms} {smoothed.lat:.6f},{smoothed.lon:.6f} {format_distance(meters):>10} {flag}")

    if not args.json:
        print(f"reached_at_ms={reached_at}" if reached_at is not None else "not reached")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from treasurehunt.api.app import create_app

    settings = get_settings()
    if args.seed:
        settings = settings.model_copy(
            update={"store": settings.store.model_copy(update={"seed_path": args.seed})}
        )
    uvicorn.run(create_app(settings), host=args.host, port=int(args.port), log_config=None)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the treasure hunt CLI."""
    parser = argparse.ArgumentParser(prog="treasurehunt")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, func, help_text in [
        ("distance", _cmd_distance, "Great-circle distance between two LAT,LON points."),
        ("bearing", _cmd_bearing, "Initial bearing (degrees) from the first point to the second."),
    ]:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("a", type=_parse_point)
        p.add_argument("b", type=_parse_point)
        p.add_argument("--json", action="store_true", help="Output machine-readable JSON")
        p.set_defaults(func=func)

    rep = sub.add_parser("replay", help="Replay a CSV GPS track against a target.")
    rep.add_argument("track", help="CSV with columns lat,lon,accuracy_m,captured_at_ms")
    rep.add_argument("--target", required=True, type=_parse_point, help="Target as LAT,LON")
    rep.add_argument("--reach", type=float, default=None, help="Geofence radius in meters (default from config)")
    rep.add_argument("--json", action="store_true", help="Output one JSON object per sample")
    rep.set_defaults(func=_cmd_replay)

    srv = sub.add_parser("serve", help="Run the HTTP API with uvicorn.")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)
    srv.add_argument("--seed", default=None, help="Location catalog JSON to seed the store with")
    srv.set_defaults(func=_cmd_serve)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m treasurehunt.cli`."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
