"""Run: python -m loop_builder [lat] [lng] [--km 5] [--trails] [--avoid-hills] [--activity run]
   With no lat/lng, uses your approximate location (from IP). Prints ranked routes as JSON.
"""
import argparse
import json
import sys
from typing import Optional, Tuple

import requests

from .builder import build_engine
from .config import EngineConfig
from .errors import ConfigurationError, NoValidRouteError
from .models import Coordinate
from .utils import configure_logging, get_logger

logger = get_logger("cli")

DEFAULT_LOCATION = (42.3551, -71.0655)  # Boston Common


def get_user_location() -> Optional[Tuple[float, float]]:
    """Get approximate (lat, lng) from the user's IP. Returns None on failure."""
    try:
        r = requests.get("https://ipapi.co/json/", timeout=5)
        r.raise_for_status()
        data = r.json()
        lat = data.get("latitude")
        lng = data.get("longitude")
        if lat is not None and lng is not None:
            return (float(lat), float(lng))
    except (requests.RequestException, ValueError):
        pass
    try:
        r = requests.get("http://ip-api.com/json/?fields=lat,lon", timeout=5)
        r.raise_for_status()
        data = r.json()
        return (float(data["lat"]), float(data["lon"]))
    except (requests.RequestException, ValueError, KeyError):
        return None


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="loop_builder", description="Generate loop running routes.")
    p.add_argument("lat", nargs="?", type=float)
    p.add_argument("lng", nargs="?", type=float)
    p.add_argument("--km", type=float, default=5.0, help="target distance in km")
    p.add_argument("--trails", action="store_true", help="prefer trails and paths")
    p.add_argument("--avoid-hills", action="store_true")
    p.add_argument("--activity", choices=("run", "walk", "hike"), default="run")
    p.add_argument("--top", type=int, default=None, help="number of routes (1-5)")
    p.add_argument("--attempts", type=int, default=None)
    p.add_argument("--env", default=None, help="path to a .env file")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging()
    if args.lat is not None and args.lng is not None:
        lat, lng = args.lat, args.lng
        logger.info("Using location: %s, %s", lat, lng)
    else:
        loc = get_user_location()
        if loc:
            lat, lng = loc
            logger.info("Using your location (from IP): %.4f, %.4f", lat, lng)
        else:
            lat, lng = DEFAULT_LOCATION
            logger.info("Could not get your location; using Boston area. Pass lat lng to override.")

    try:
        engine = build_engine(EngineConfig.from_env(args.env))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    try:
        routes = engine.generate(
            Coordinate(lat, lng),
            args.km,
            prefer_trails=args.trails,
            max_attempts=args.attempts,
            avoid_hills=args.avoid_hills,
            activity_type=args.activity,
            top_k=args.top,
        )
    except NoValidRouteError as e:
        print(json.dumps({"error": e.suggestion, "failureCounts": e.failure_counts}, indent=2))
        return 1
    except ValueError as e:
        print(f"Invalid input: {e}", file=sys.stderr)
        return 2
    print(json.dumps({"routes": [r.to_dict() for r in routes]}, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
