"""Tests for direct, transfer and walking-transfer itinerary search."""

import pytest

from dcbus.geo import estimate_duration
from dcbus.models import Coordinate, ItineraryType
from dcbus.network import build_network
from dcbus.route_finder import (
    find_all_routes,
    find_route,
    find_single_route,
    find_transfer_route,
    get_route_directions,
    get_stops_between,
)


def _at(network, stop_id):
    return network.stops[stop_id].coordinate


def test_direct_itinerary(network, single_itinerary):
    itinerary = single_itinerary
    assert itinerary.type == ItineraryType.SINGLE
    assert len(itinerary.segments) == 1

    segment = itinerary.segments[0]
    assert segment.route_id == "A-AM"
    assert segment.route_name == "A - Line A"
    assert segment.route_color == "#ff0000"
    assert segment.stops_count == 5
    assert segment.boarding_stop.id == "stop-a1"
    assert segment.alighting_stop.id == "stop-a5"
    assert [s.id for s in segment.intermediate_stops] == ["stop-a2", "stop-a3", "stop-a4"]
    assert itinerary.total_stops == 5
    assert itinerary.transfer_points == []
    assert itinerary.total_distance_km == pytest.approx(4 * 1.104, rel=0.01)
    assert itinerary.estimated_duration_min == estimate_duration(itinerary.total_distance_km)


def test_direct_itinerary_against_route_direction(network):
    itinerary = find_route(_at(network, "stop-a5"), _at(network, "stop-a2"), network)
    segment = itinerary.segments[0]
    assert segment.boarding_stop.id == "stop-a5"
    assert segment.alighting_stop.id == "stop-a2"
    assert segment.stops_count == 4


def test_origin_and_destination_snap_to_same_stop(network):
    origin = Coordinate(lat=7.0001, lng=125.5)
    destination = Coordinate(lat=6.9999, lng=125.5001)
    assert find_route(origin, destination, network) is None


def test_empty_network_finds_nothing():
    empty = build_network([])
    assert find_route(Coordinate(lat=7.0, lng=125.5), Coordinate(lat=7.1, lng=125.6), empty) is None
    assert find_all_routes(Coordinate(lat=7.0, lng=125.5), Coordinate(lat=7.1, lng=125.6), empty) == []


def test_transfer_picks_lowest_score(network, transfer_itinerary):
    itinerary = transfer_itinerary
    assert itinerary.type == ItineraryType.TRANSFER
    assert [s.route_id for s in itinerary.segments] == ["A-AM", "B-AM"]
    # Stop A6 (onto line C) also reaches Stop B3, but the ride is longer
    assert [s.id for s in itinerary.transfer_points] == ["stop-a4"]

    first, second = itinerary.segments
    assert first.alighting_stop.id == "stop-a4"
    assert second.boarding_stop.id == "stop-a4"
    assert second.alighting_stop.id == "stop-b3"
    assert itinerary.total_stops == first.stops_count + second.stops_count - 1 == 7
    assert itinerary.total_distance_km == pytest.approx(first.distance_km + second.distance_km)
    assert itinerary.estimated_duration_min == estimate_duration(itinerary.total_distance_km) + 5


def test_transfer_not_attempted_without_allowance(network):
    assert find_route(_at(network, "stop-a1"), _at(network, "stop-b3"), network, max_transfers=0) is None


def test_direct_route_preferred_over_transfer(network):
    # Stop A4 is on both A and B; A1 -> A4 is a direct ride on A
    itinerary = find_route(_at(network, "stop-a1"), _at(network, "stop-a4"), network)
    assert itinerary.type == ItineraryType.SINGLE


def test_single_and_transfer_helpers(network):
    a1, b3 = network.stops["stop-a1"], network.stops["stop-b3"]
    assert find_single_route(a1, b3, network) is None
    assert find_transfer_route(a1, b3, network).transfer_points[0].id == "stop-a4"


def test_get_stops_between(network):
    stops = network.stops_for_route("A-AM")
    a2, a4 = network.stops["stop-a2"], network.stops["stop-a4"]
    assert [s.id for s in get_stops_between(stops, a2, a4)] == ["stop-a2", "stop-a3", "stop-a4"]
    assert [s.id for s in get_stops_between(stops, a4, a2)] == ["stop-a2", "stop-a3", "stop-a4"]
    assert get_stops_between(stops, a2, network.stops["stop-b1"]) == []


def test_walking_transfer_disabled_by_default(network):
    assert find_route(_at(network, "stop-d1"), _at(network, "stop-e3"), network) is None


def test_walking_transfer(network):
    itinerary = find_route(
        _at(network, "stop-d1"), _at(network, "stop-e3"), network, walking_transfer_km=0.3
    )
    assert itinerary.type == ItineraryType.TRANSFER
    first, second = itinerary.segments
    assert first.alighting_stop.id == "stop-d3"
    assert second.boarding_stop.id == "stop-e1"

    walk = first.walk_to_next_stop
    assert walk.from_stop.id == "stop-d3"
    assert walk.to_stop.id == "stop-e1"
    assert 190 <= walk.distance_meters <= 210
    assert second.walk_to_next_stop is None

    assert [s.id for s in itinerary.transfer_points] == ["stop-d3", "stop-e1"]
    # No shared stop, so nothing is subtracted
    assert itinerary.total_stops == 6
    ride_km = first.distance_km + second.distance_km
    assert itinerary.total_distance_km == pytest.approx(ride_km + walk.distance_meters / 1000, abs=0.001)
    assert itinerary.estimated_duration_min == estimate_duration(ride_km) + 5 + 3


def test_walking_transfer_out_of_range(network):
    assert find_route(
        _at(network, "stop-d1"), _at(network, "stop-e3"), network, walking_transfer_km=0.1
    ) is None


def test_find_all_routes_sorted_by_distance(network):
    # Midway between A1 and A2: nothing within 0.5 km, so the 2 km fallback applies
    origin = Coordinate(lat=7.0, lng=125.505)
    results = find_all_routes(origin, _at(network, "stop-b3"), network)

    assert len(results) == 3
    distances = [r.total_distance_km for r in results]
    assert distances == sorted(distances)
    assert results[0].segments[0].boarding_stop.id == "stop-a3"
    assert {r.segments[0].boarding_stop.id for r in results} == {"stop-a1", "stop-a2", "stop-a3"}


def test_find_all_routes_max_results(network):
    origin = Coordinate(lat=7.0, lng=125.505)
    assert len(find_all_routes(origin, _at(network, "stop-b3"), network, max_results=2)) == 2


def test_find_all_routes_deduplicates_by_first_ride(network):
    # Between B2 and B3, so B1..B3 are all candidates, each reached from A1 via A4
    destination = Coordinate(lat=7.025, lng=125.53)
    results = find_all_routes(_at(network, "stop-a1"), destination, network)
    assert len(results) == 1
    assert results[0].segments[0].route_id == "A-AM"


def test_find_all_routes_includes_direct(network):
    results = find_all_routes(_at(network, "stop-a1"), _at(network, "stop-a5"), network)
    assert [r.type for r in results] == [ItineraryType.SINGLE]


def test_directions_for_transfer(transfer_itinerary):
    assert get_route_directions(transfer_itinerary) == [
        'Board "A - Line A" at Stop A1',
        "Pass through 2 stop(s)",
        "Alight at Stop A4",
        'Transfer to "B - Line B" at Stop A4',
        "Pass through 2 stop(s)",
        "Alight at Stop B3",
    ]


def test_directions_for_walking_transfer(network):
    itinerary = find_route(
        _at(network, "stop-d1"), _at(network, "stop-e3"), network, walking_transfer_km=0.3
    )
    directions = get_route_directions(itinerary)
    walk = itinerary.segments[0].walk_to_next_stop
    assert f"Walk {walk.distance_meters}m to Stop E1" in directions
    assert directions.index(f"Walk {walk.distance_meters}m to Stop E1") == 3
