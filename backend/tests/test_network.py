"""Tests for the network snapshot builder and route file loader."""

import json
import logging

import pytest

from dcbus.exceptions import RouteDataError
from dcbus.network import NetworkProvider, build_network, load_route_definitions, normalize_stop_id


@pytest.mark.parametrize("name,expected", [
    ("Bankerohan Market", "bankerohan-market"),
    ("BANKEROHAN MARKET", "bankerohan-market"),
    ("  Bankerohan -- Market!! ", "bankerohan-market"),
    ("Roxas Avenue (Ateneo)", "roxas-avenue-ateneo"),
    ("People's Park", "people-s-park"),
])
def test_normalize_stop_id(name, expected):
    assert normalize_stop_id(name) == expected


def test_same_stop_in_two_routes_collapses(make_route):
    first = make_route("R103", "Toril - Roxas", [
        ("Toril Public Market", 7.0186, 125.4983),
        ("Bankerohan Market", 7.0689, 125.6047),
    ])
    second = make_route("R402", "Bankerohan - Lanang", [
        ("BANKEROHAN market.", 7.0690, 125.6049),
        ("Agdao Public Market", 7.0860, 125.6250),
    ])
    snapshot = build_network([first, second])

    assert list(snapshot.stops) == ["toril-public-market", "bankerohan-market", "agdao-public-market"]
    stop = snapshot.stops["bankerohan-market"]
    assert stop.route_ids == ("R103-AM", "R402-AM")
    # First occurrence wins name and position
    assert stop.name == "Bankerohan Market"
    assert stop.coordinate.lat == 7.0689
    assert snapshot.routes_for_stop("bankerohan-market") == ("R103-AM", "R402-AM")
    # Each route's ordered stops carry the full membership
    assert snapshot.stops_for_route("R103-AM")[1].route_ids == ("R103-AM", "R402-AM")


def test_routes_and_polylines(network):
    route = network.routes["A-AM"]
    assert route.name == "A - Line A"
    assert route.description == "Test (AM)"
    assert route.color == "#ff0000"
    # Polyline keeps waypoints; the ordered stop list does not
    assert len(route.polyline) == 8
    assert [s.id for s in network.stops_for_route("A-AM")] == [f"stop-a{i}" for i in range(1, 8)]


def test_lookups_cannot_mutate_snapshot(network):
    stops = network.stops_for_route("A-AM")
    route_ids = network.routes_for_stop("stop-a4")
    assert isinstance(stops, tuple)
    assert isinstance(route_ids, tuple)
    assert isinstance(network.stop_areas["stop-a4"], tuple)

    with pytest.raises(AttributeError):
        stops.append(stops[0])
    with pytest.raises(AttributeError):
        route_ids.clear()
    assert len(network.stops_for_route("A-AM")) == 7
    assert network.routes_for_stop("stop-a4") == ("A-AM", "B-AM")


def test_stop_order_is_per_route(network):
    assert network.order_on_route("A-AM", "stop-a4") == 4
    assert network.order_on_route("B-AM", "stop-a4") == 1
    assert network.order_on_route("C-AM", "stop-a6") == 1
    assert network.order_on_route("B-AM", "stop-a1") is None


def test_stop_areas(make_route):
    first = make_route("R1", "One", [("Shared", 7.0, 125.5)])
    second = make_route("R2", "Two", [("Shared", 7.0, 125.5)])
    second = second.model_copy(update={"area": "Agdao"})
    snapshot = build_network([first, second])
    assert snapshot.stop_areas["shared"] == ("Test", "Agdao")


def test_waypoints_and_unnamed_stops_skipped(caplog, make_route):
    route = make_route("R9", "Gaps", [("Start", 7.0, 125.5), (None, 7.0, 125.51), ("End", 7.0, 125.52)])
    unnamed = route.points[0].model_copy(update={"name": "  ", "id": "blank"})
    route = route.model_copy(update={"points": route.points + [unnamed]})

    with caplog.at_level(logging.INFO, logger="dcbus.network"):
        snapshot = build_network([route])

    assert list(snapshot.stops) == ["start", "end"]
    assert len(snapshot.routes["R9-AM"].polyline) == 4
    assert "Skipped 1 unnamed stop points" in caplog.text


def test_build_is_idempotent(route_definitions):
    first = build_network(route_definitions)
    second = build_network(route_definitions)
    assert first == second
    assert first.stop_routes == second.stop_routes
    assert list(first.route_stops) == list(second.route_stops)


def test_route_geometry(network):
    geometry = network.route_geometry("B-AM")
    assert geometry["type"] == "LineString"
    assert geometry["coordinates"][0] == [125.53, 7.00]
    assert network.route_geometry("missing") is None


def test_load_route_definitions(routes_fixture_dir):
    definitions = load_route_definitions(str(routes_fixture_dir))
    assert [d.route_id for d in definitions] == ["L1-AM", "L2-AM"]
    # camelCase and lat/lng keys are accepted too
    assert definitions[1].name == "Delta - Foxtrot"
    assert definitions[1].points[0].lat == 7.00

    snapshot = build_network(definitions)
    assert snapshot.stops["delta"].route_ids == ("L1-AM", "L2-AM")


def test_load_skips_non_json_files(tmp_path, routes_fixture_dir):
    (tmp_path / "notes.txt").write_text("not a route")
    (tmp_path / "L1-AM.json").write_text((routes_fixture_dir / "L1-AM.json").read_text())
    assert len(load_route_definitions(str(tmp_path))) == 1


def test_load_missing_directory(tmp_path):
    with pytest.raises(RouteDataError):
        load_route_definitions(str(tmp_path / "nope"))


def test_load_invalid_json(tmp_path):
    (tmp_path / "broken.json").write_text("{not json")
    with pytest.raises(RouteDataError, match="broken.json"):
        load_route_definitions(str(tmp_path))


def test_load_invalid_definition(tmp_path):
    (tmp_path / "bad.json").write_text(json.dumps({"points": []}))
    with pytest.raises(RouteDataError):
        load_route_definitions(str(tmp_path))


def test_provider_builds_once(route_definitions):
    provider = NetworkProvider(route_definitions)
    assert not provider.is_built
    snapshot = provider.get()
    assert provider.is_built
    assert provider.get() is snapshot
    rebuilt = provider.rebuild()
    assert rebuilt is not snapshot
    assert rebuilt == snapshot


def test_empty_network():
    snapshot = build_network([])
    assert snapshot.all_stops() == []
    assert snapshot.stops_for_route("x") == ()
    assert snapshot.routes_for_stop("x") == ()
