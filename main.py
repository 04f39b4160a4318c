"""Command-line interface for the Spark parking service."""

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, Sequence

from spark.config import SparkConfig, load_config
from spark.geo import estimate_minutes
from spark.models import ParkingCandidate
from spark.parking import LocationNotFound, NearbyParkingTracker, RefreshFailed, filter_by_name
from spark.places import PlacesClient

logger = logging.getLogger("spark.main")

_KNOWN_COMMANDS = {"serve", "nearby", "geocode"}


def _positive_radius(value: str) -> float:
    try:
        radius = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid radius: {value!r}") from exc
    if radius <= 0:
        raise argparse.ArgumentTypeError("radius must be positive")
    return radius


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Spark nearby-parking utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the YAML configuration file (default: config/spark.yaml or $SPARK_CONFIG)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port for the API (default: 8000)")

    nearby_parser = subparsers.add_parser("nearby", help="List parking near a coordinate")
    nearby_parser.add_argument("--lat", type=float, required=True, help="Latitude in degrees")
    nearby_parser.add_argument("--lon", type=float, required=True, help="Longitude in degrees")
    nearby_parser.add_argument("--radius", type=_positive_radius, default=None, help="Search radius in meters")
    nearby_parser.add_argument("--filter", default="", help="Only show lots whose name contains this text")

    geocode_parser = subparsers.add_parser("geocode", help="List parking near a named place")
    geocode_parser.add_argument("query", help="Free-text place name")
    geocode_parser.add_argument("--radius", type=_positive_radius, default=None, help="Search radius in meters")

    args_list = list(argv) if argv is not None else sys.argv[1:]

    if not args_list:
        args_list = ["serve"]
    else:
        command_index = 0
        if args_list[0] == "--config" and len(args_list) >= 2:
            command_index = 2
        elif args_list[0].startswith("--config="):
            command_index = 1
        rest = args_list[command_index:]
        if not rest:
            args_list = [*args_list, "serve"]
        elif rest[0] not in _KNOWN_COMMANDS and not any(flag in args_list for flag in ("-h", "--help")):
            args_list = [*args_list[:command_index], "serve", *rest]

    return parser.parse_args(args_list)


def _load(args: argparse.Namespace) -> SparkConfig:
    return load_config(Path(args.config).expanduser() if args.config else None)


def _print_candidates(candidates: Iterable[ParkingCandidate], walking_speed: float) -> None:
    rows = list(candidates)
    if not rows:
        print("No parking found nearby.")
        return

    print(f"{len(rows)} parking lot(s) found:")
    print(f"{'Name':<32}  {'Distance':>9}  {'Walk':>7}  Location")
    print("-" * 80)
    for candidate in rows:
        minutes = estimate_minutes(candidate.distance, walking_speed)
        print(
            f"{candidate.name[:32]:<32}  {round(candidate.distance):>7} m  {minutes:>3} min  "
            f"{candidate.latitude:.5f},{candidate.longitude:.5f}"
        )


def _serve(config: SparkConfig, *, host: str, port: int) -> None:
    from spark.api import create_app
    import uvicorn

    try:
        app = create_app(config=config)
    except ValueError as exc:
        raise SystemExit(
            f"Cannot start the API: {exc}. Set backend_url and backend_key in the configuration "
            "file or export SPARK_BACKEND_URL and SPARK_BACKEND_KEY."
        ) from exc

    logger.info("Starting Spark API on http://%s:%s", host, port)
    uvicorn.run(app, host=host, port=port, log_level="info")


def _nearby(config: SparkConfig, *, lat: float, lon: float, radius: float | None, name_filter: str) -> int:
    places = PlacesClient.from_config(config)
    try:
        tracker = NearbyParkingTracker(places, radius=config.search_radius, limit=config.result_limit)
        try:
            result = tracker.refresh(lat, lon, radius)
        except RefreshFailed as exc:
            print(f"Failed to load parking: {exc}")
            return 1
        except ValueError as exc:
            print(f"Invalid request: {exc}")
            return 1
    finally:
        places.close()

    _print_candidates(filter_by_name(result.candidates, name_filter), config.walking_speed)
    return 0


def _geocode(config: SparkConfig, *, query: str, radius: float | None) -> int:
    places = PlacesClient.from_config(config)
    try:
        tracker = NearbyParkingTracker(places, radius=config.search_radius, limit=config.result_limit)
        try:
            result = tracker.search(query, radius)
        except LocationNotFound as exc:
            print(str(exc))
            return 1
        except ValueError as exc:
            print(f"Invalid request: {exc}")
            return 1
        except RefreshFailed as exc:
            print(f"Failed to load parking: {exc}")
            return 1
    finally:
        places.close()

    if result.place is not None:
        print(f"Parking near {result.place.display_name}")
    _print_candidates(result.candidates, config.walking_speed)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    try:
        config = _load(args)
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    if args.command == "serve":
        _serve(config, host=args.host, port=args.port)
        return 0
    if args.command == "nearby":
        return _nearby(config, lat=args.lat, lon=args.lon, radius=args.radius, name_filter=args.filter)
    if args.command == "geocode":
        return _geocode(config, query=args.query, radius=args.radius)
    return 0


if __name__ == "__main__":
    sys.exit(main())
