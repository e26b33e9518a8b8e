"""Route network snapshot: deduplicated stops, per-route stop sequences, stop->routes index.

Route files list every point of a route (stops and waypoints). The same physical stop
appears once per route file, each time with its own raw id, so stops are keyed by their
normalized name instead. That is what lets two routes share a stop and makes transfers
detectable.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from pydantic import ValidationError

from dcbus.exceptions import RouteDataError
from dcbus.geo import to_geojson
from dcbus.models import Coordinate, Route, RouteDefinition, RoutePoint, RoutePointKind, Stop

logger = logging.getLogger("dcbus.network")

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def normalize_stop_id(name: str) -> str:
    """'Bankerohan Market (Gate 2)' -> 'bankerohan-market-gate-2'"""
    return _NON_ALNUM_RE.sub("-", name.lower()).strip("-")


def _stop_key(point: RoutePoint) -> Optional[str]:
    """Normalized id for a stop point, None for waypoints and unidentifiable stops."""
    if point.kind != RoutePointKind.STOP or not point.name:
        return None
    return normalize_stop_id(point.name) or None


@dataclass(frozen=True)
class NetworkSnapshot:
    """Read-only index of all routes and stops. Build with `build_network`."""
    routes: dict[str, Route] = field(default_factory=dict)
    stops: dict[str, Stop] = field(default_factory=dict)
    route_stops: dict[str, tuple[Stop, ...]] = field(default_factory=dict)  # route_id -> ordered stops
    stop_routes: dict[str, tuple[str, ...]] = field(default_factory=dict)  # stop_id -> route_ids
    stop_areas: dict[str, tuple[str, ...]] = field(default_factory=dict)  # stop_id -> areas served
    stop_order: dict[tuple[str, str], int] = field(default_factory=dict)  # (route_id, stop_id) -> 1-based

    def all_stops(self) -> list[Stop]:
        return list(self.stops.values())

    def stops_for_route(self, route_id: str) -> tuple[Stop, ...]:
        return self.route_stops.get(route_id, ())

    def routes_for_stop(self, stop_id: str) -> tuple[str, ...]:
        return self.stop_routes.get(stop_id, ())

    def order_on_route(self, route_id: str, stop_id: str) -> Optional[int]:
        return self.stop_order.get((route_id, stop_id))

    def route_geometry(self, route_id: str) -> Optional[dict]:
        route = self.routes.get(route_id)
        if route is None:
            return None
        return {
            "type": "LineString",
            "coordinates": [to_geojson(c) for c in route.polyline],
        }


def build_network(definitions: Iterable[RouteDefinition]) -> NetworkSnapshot:
    """Build the snapshot from route definitions. Pure and deterministic for a given order."""
    definitions = list(definitions)

    # First pass: full route membership (and areas) of every stop across all files.
    # A single file cannot tell which other routes visit its stops.
    stop_to_routes: dict[str, dict[str, None]] = {}  # dict as an insertion-ordered set
    stop_to_areas: dict[str, dict[str, None]] = {}
    stop_info: dict[str, tuple[str, Coordinate]] = {}
    skipped = 0

    for definition in definitions:
        route_id = definition.route_id
        for point in definition.points:
            if point.kind != RoutePointKind.STOP:
                continue
            stop_id = _stop_key(point)
            if stop_id is None:
                skipped += 1
                logger.debug(f"Skipping unnamed stop point {point.id!r} on {route_id}")
                continue
            if stop_id not in stop_info:
                stop_info[stop_id] = (point.name, Coordinate(lat=point.lat, lng=point.lng))
            stop_to_routes.setdefault(stop_id, {})[route_id] = None
            stop_to_areas.setdefault(stop_id, {})[definition.area] = None

    stops: dict[str, Stop] = {}
    for stop_id, (name, coord) in stop_info.items():
        stops[stop_id] = Stop(
            id=stop_id,
            name=name,
            coordinate=coord,
            route_ids=tuple(stop_to_routes[stop_id]),
        )

    # Second pass: polylines and ordered stop lists per route
    routes: dict[str, Route] = {}
    route_stops: dict[str, tuple[Stop, ...]] = {}
    stop_order: dict[tuple[str, str], int] = {}

    for definition in definitions:
        route_id = definition.route_id
        routes[route_id] = Route(
            id=route_id,
            name=f"{definition.route_number} - {definition.name}",
            color=definition.color,
            description=f"{definition.area} ({definition.time_period})",
            area=definition.area,
            time_period=definition.time_period,
            polyline=tuple(Coordinate(lat=p.lat, lng=p.lng) for p in definition.points),
        )

        ordered: list[Stop] = []
        for point in definition.points:
            stop_id = _stop_key(point)
            if stop_id is None:
                continue
            stop = stops[stop_id]
            ordered.append(stop)
            stop_order.setdefault((route_id, stop.id), len(ordered))
        route_stops[route_id] = tuple(ordered)

    stop_routes = {sid: tuple(s.route_ids) for sid, s in stops.items()}
    stop_areas = {sid: tuple(areas) for sid, areas in stop_to_areas.items()}

    if skipped:
        logger.info(f"Skipped {skipped} unnamed stop points")
    logger.info(f"Built route network: {len(routes)} routes, {len(stops)} stops")

    return NetworkSnapshot(
        routes=routes,
        stops=stops,
        route_stops=route_stops,
        stop_routes=stop_routes,
        stop_areas=stop_areas,
        stop_order=stop_order,
    )


def load_route_definitions(directory: str) -> list[RouteDefinition]:
    """Read every `*.json` route file in `directory`, in filename order."""
    if not os.path.isdir(directory):
        raise RouteDataError(f"Route data directory does not exist: {directory}")

    definitions = []
    for fname in sorted(os.listdir(directory)):
        if not fname.endswith(".json"):
            continue
        fpath = os.path.join(directory, fname)
        try:
            with open(fpath, "r", encoding="utf-8") as f:
                data = json.load(f)
            definitions.append(RouteDefinition.model_validate(data))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise RouteDataError(f"Could not read route file {fpath}: {e}") from e
        logger.debug(f"Loaded route file {fname}")

    logger.info(f"Loaded {len(definitions)} route definitions from {directory}")
    return definitions


class NetworkProvider:
    """Builds the snapshot on first use and hands out the same instance afterwards."""

    def __init__(self, definitions: Iterable[RouteDefinition]):
        self._definitions = list(definitions)
        self._snapshot: Optional[NetworkSnapshot] = None

    @classmethod
    def from_directory(cls, directory: str) -> "NetworkProvider":
        return cls(load_route_definitions(directory))

    def get(self) -> NetworkSnapshot:
        if self._snapshot is None:
            self._snapshot = build_network(self._definitions)
        return self._snapshot

    def rebuild(self) -> NetworkSnapshot:
        self._snapshot = build_network(self._definitions)
        return self._snapshot

    @property
    def is_built(self) -> bool:
        return self._snapshot is not None
