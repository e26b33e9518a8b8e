"""Itinerary search over the route network: direct rides and one-transfer rides.

There is no graph here. A trip is either one route that serves both the boarding and
the alighting stop, or two routes that meet at a shared stop (optionally at two stops
a short walk apart).
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from dcbus.config import (
    EXPANDED_SEARCH_RADIUS_KM,
    MAX_ROUTE_RESULTS,
    SEARCH_RADIUS_KM,
    TRANSFER_WAIT_TIME_MIN,
    WALKING_PENALTY_FACTOR,
    WALKING_TRANSFER_KM,
)
from dcbus.geo import (
    estimate_duration,
    estimate_walking_duration,
    find_nearest_stop,
    find_stops_within_radius,
    route_distance,
)
from dcbus.models import Coordinate, Itinerary, ItineraryType, Segment, Stop, WalkingTransfer
from dcbus.network import NetworkSnapshot

logger = logging.getLogger("dcbus.route_finder")


@dataclass
class _TransferOption:
    drop_off_stop: Stop
    first_route_id: str
    second_route_id: str
    score: float
    walk_to_stop: Optional[Stop] = None  # walking transfers only
    walking_distance_km: float = 0.0


def _index_of(route_stops: Sequence[Stop], stop_id: str) -> int:
    for i, s in enumerate(route_stops):
        if s.id == stop_id:
            return i
    return -1


def get_stops_between(route_stops: Sequence[Stop], from_stop: Stop, to_stop: Stop) -> list[Stop]:
    """Inclusive slice of a route's stops between two stops, in route order.

    Works regardless of which stop comes first on the route.
    """
    from_idx = _index_of(route_stops, from_stop.id)
    to_idx = _index_of(route_stops, to_stop.id)
    if from_idx == -1 or to_idx == -1:
        return []

    start, end = min(from_idx, to_idx), max(from_idx, to_idx)
    return list(route_stops[start:end + 1])


def _common_routes(stop1: Stop, stop2: Stop) -> list[str]:
    routes1 = set(stop1.route_ids)
    return [r for r in stop2.route_ids if r in routes1]


def create_segment(
    route_id: str,
    snapshot: NetworkSnapshot,
    boarding_stop: Stop,
    alighting_stop: Stop,
) -> Segment:
    route = snapshot.routes[route_id]
    stops_between = get_stops_between(snapshot.stops_for_route(route_id), boarding_stop, alighting_stop)

    return Segment(
        route_id=route_id,
        route_name=route.name,
        route_color=route.color,
        boarding_stop=boarding_stop,
        alighting_stop=alighting_stop,
        intermediate_stops=stops_between[1:-1],
        stops_count=len(stops_between),
        distance_km=route_distance(stops_between),
    )


def find_single_route(
    boarding_stop: Stop, alighting_stop: Stop, snapshot: NetworkSnapshot
) -> Optional[Itinerary]:
    """Direct ride. Takes the first common route; candidates are not ranked."""
    common = [r for r in _common_routes(boarding_stop, alighting_stop) if r in snapshot.routes]
    if not common:
        return None

    segment = create_segment(common[0], snapshot, boarding_stop, alighting_stop)
    return Itinerary(
        type=ItineraryType.SINGLE,
        segments=[segment],
        total_stops=segment.stops_count,
        total_distance_km=segment.distance_km,
        transfer_points=[],
        estimated_duration_min=estimate_duration(segment.distance_km),
    )


def _shared_stop_transfers(
    boarding_stop: Stop, alighting_stop: Stop, snapshot: NetworkSnapshot
) -> list[_TransferOption]:
    alighting_routes = set(alighting_stop.route_ids)
    options = []

    for first_route_id in boarding_stop.route_ids:
        first_route_stops = snapshot.stops_for_route(first_route_id)

        for candidate in first_route_stops:
            if candidate.id in (boarding_stop.id, alighting_stop.id):
                continue

            for second_route_id in candidate.route_ids:
                if second_route_id == first_route_id or second_route_id not in alighting_routes:
                    continue

                first_leg = get_stops_between(first_route_stops, boarding_stop, candidate)
                second_leg = get_stops_between(
                    snapshot.stops_for_route(second_route_id), candidate, alighting_stop
                )
                options.append(_TransferOption(
                    drop_off_stop=candidate,
                    first_route_id=first_route_id,
                    second_route_id=second_route_id,
                    score=route_distance(first_leg) + route_distance(second_leg),
                ))

    return options


def _walking_transfers(
    boarding_stop: Stop,
    alighting_stop: Stop,
    snapshot: NetworkSnapshot,
    max_walking_km: float,
) -> list[_TransferOption]:
    """Transfers that need a short walk between two different stops."""
    alighting_routes = set(alighting_stop.route_ids)
    all_stops = snapshot.all_stops()
    options = []

    for first_route_id in boarding_stop.route_ids:
        first_route_stops = snapshot.stops_for_route(first_route_id)

        for drop_off in first_route_stops:
            if drop_off.id == boarding_stop.id:
                continue

            for nearby in find_stops_within_radius(drop_off.coordinate, all_stops, max_walking_km):
                if nearby.stop.id == drop_off.id:
                    continue

                for second_route_id in nearby.stop.route_ids:
                    if second_route_id == first_route_id or second_route_id not in alighting_routes:
                        continue

                    first_leg = get_stops_between(first_route_stops, boarding_stop, drop_off)
                    second_leg = get_stops_between(
                        snapshot.stops_for_route(second_route_id), nearby.stop, alighting_stop
                    )
                    ride_km = route_distance(first_leg) + route_distance(second_leg)
                    options.append(_TransferOption(
                        drop_off_stop=drop_off,
                        walk_to_stop=nearby.stop,
                        walking_distance_km=nearby.distance_km,
                        first_route_id=first_route_id,
                        second_route_id=second_route_id,
                        score=ride_km + nearby.distance_km * WALKING_PENALTY_FACTOR,
                    ))

    return options


def find_transfer_route(
    boarding_stop: Stop,
    alighting_stop: Stop,
    snapshot: NetworkSnapshot,
    walking_transfer_km: Optional[float] = None,
) -> Optional[Itinerary]:
    """Best one-transfer itinerary by summed ride distance; ties go to the first found.

    Walking transfers are only considered when no shared-stop transfer exists and
    `walking_transfer_km` is positive.
    """
    options = _shared_stop_transfers(boarding_stop, alighting_stop, snapshot)

    if not options and walking_transfer_km and walking_transfer_km > 0:
        options = _walking_transfers(boarding_stop, alighting_stop, snapshot, walking_transfer_km)
        if options:
            logger.debug(f"Using walking transfer for {boarding_stop.id} -> {alighting_stop.id}")

    if not options:
        return None

    best = min(options, key=lambda o: o.score)  # min keeps the first of equal scores

    first = create_segment(best.first_route_id, snapshot, boarding_stop, best.drop_off_stop)
    second_boarding = best.walk_to_stop or best.drop_off_stop
    second = create_segment(best.second_route_id, snapshot, second_boarding, alighting_stop)

    ride_km = first.distance_km + second.distance_km
    duration = estimate_duration(ride_km) + TRANSFER_WAIT_TIME_MIN

    if best.walk_to_stop is not None:
        first = first.model_copy(update={
            "walk_to_next_stop": WalkingTransfer(
                from_stop=best.drop_off_stop,
                to_stop=best.walk_to_stop,
                distance_meters=round(best.walking_distance_km * 1000),
            )
        })
        return Itinerary(
            type=ItineraryType.TRANSFER,
            segments=[first, second],
            total_stops=first.stops_count + second.stops_count,
            total_distance_km=ride_km + best.walking_distance_km,
            transfer_points=[best.drop_off_stop, best.walk_to_stop],
            estimated_duration_min=duration + estimate_walking_duration(best.walking_distance_km),
        )

    return Itinerary(
        type=ItineraryType.TRANSFER,
        segments=[first, second],
        total_stops=first.stops_count + second.stops_count - 1,  # shared stop counted once
        total_distance_km=ride_km,
        transfer_points=[best.drop_off_stop],
        estimated_duration_min=duration,
    )


def find_route(
    origin: Coordinate,
    destination: Coordinate,
    snapshot: NetworkSnapshot,
    max_transfers: int = 1,
    walking_transfer_km: Optional[float] = None,
) -> Optional[Itinerary]:
    """Single best itinerary between the stops nearest to origin and destination.

    Returns None when the network is empty, both points snap to the same stop, or no
    direct/one-transfer itinerary exists.
    """
    if walking_transfer_km is None:
        walking_transfer_km = WALKING_TRANSFER_KM

    all_stops = snapshot.all_stops()
    nearest_origin = find_nearest_stop(origin, all_stops)
    nearest_dest = find_nearest_stop(destination, all_stops)
    if nearest_origin is None or nearest_dest is None:
        logger.debug("find_route: network has no stops")
        return None

    boarding_stop = nearest_origin.stop
    alighting_stop = nearest_dest.stop
    if boarding_stop.id == alighting_stop.id:
        logger.debug(f"find_route: origin and destination both snap to {boarding_stop.id}")
        return None

    single = find_single_route(boarding_stop, alighting_stop, snapshot)
    if single:
        return single

    if max_transfers >= 1:
        transfer = find_transfer_route(boarding_stop, alighting_stop, snapshot, walking_transfer_km)
        if transfer:
            return transfer

    logger.debug(f"find_route: no itinerary {boarding_stop.id} -> {alighting_stop.id}")
    return None


def _candidate_stops(point: Coordinate, snapshot: NetworkSnapshot) -> list[Stop]:
    all_stops = snapshot.all_stops()
    nearby = find_stops_within_radius(point, all_stops, SEARCH_RADIUS_KM)
    if not nearby:
        nearby = find_stops_within_radius(point, all_stops, EXPANDED_SEARCH_RADIUS_KM)
    return [n.stop for n in nearby]


def find_all_routes(
    origin: Coordinate,
    destination: Coordinate,
    snapshot: NetworkSnapshot,
    max_results: int = MAX_ROUTE_RESULTS,
    max_transfers: int = 1,
    walking_transfer_km: Optional[float] = None,
) -> list[Itinerary]:
    """Alternatives from every stop near the origin to every stop near the destination.

    Results are deduplicated by (first route, first boarding stop), ordered by total
    distance and cut to `max_results`. The top result can differ from `find_route`.
    """
    if walking_transfer_km is None:
        walking_transfer_km = WALKING_TRANSFER_KM

    origin_stops = _candidate_stops(origin, snapshot)
    dest_stops = _candidate_stops(destination, snapshot)

    results: list[Itinerary] = []
    for boarding_stop in origin_stops:
        for alighting_stop in dest_stops:
            if boarding_stop.id == alighting_stop.id:
                continue

            single = find_single_route(boarding_stop, alighting_stop, snapshot)
            if single:
                results.append(single)

            if max_transfers >= 1:
                transfer = find_transfer_route(
                    boarding_stop, alighting_stop, snapshot, walking_transfer_km
                )
                if transfer:
                    results.append(transfer)

    seen: set[tuple[str, str]] = set()
    unique = []
    for itinerary in results:
        first = itinerary.segments[0]
        key = (first.route_id, first.boarding_stop.id)
        if key in seen:
            continue
        seen.add(key)
        unique.append(itinerary)

    unique.sort(key=lambda r: r.total_distance_km)
    logger.debug(
        f"find_all_routes: {len(origin_stops)}x{len(dest_stops)} stop pairs, "
        f"{len(results)} itineraries, {len(unique)} unique"
    )
    return unique[:max_results]


def get_route_directions(itinerary: Itinerary) -> list[str]:
    """Step-by-step text for an itinerary."""
    directions = []

    for i, segment in enumerate(itinerary.segments):
        if i == 0:
            directions.append(f'Board "{segment.route_name}" at {segment.boarding_stop.name}')
        else:
            directions.append(f'Transfer to "{segment.route_name}" at {segment.boarding_stop.name}')

        if segment.intermediate_stops:
            directions.append(f"Pass through {len(segment.intermediate_stops)} stop(s)")

        directions.append(f"Alight at {segment.alighting_stop.name}")

        if segment.walk_to_next_stop:
            walk = segment.walk_to_next_stop
            directions.append(f"Walk {walk.distance_meters}m to {walk.to_stop.name}")

    return directions
