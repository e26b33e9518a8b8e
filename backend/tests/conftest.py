"""Pytest configuration and fixtures."""

from pathlib import Path

import pytest

from dcbus.models import Coordinate, RouteDefinition
from dcbus.network import NetworkSnapshot, build_network
from dcbus.route_finder import find_route


def build_route(number: str, name: str, stops: list[tuple], period: str = "AM", color: str = "#3388ff"):
    """RouteDefinition from (name, lat, lng) tuples. A name of None makes a waypoint."""
    points = []
    for i, (stop_name, lat, lng) in enumerate(stops):
        points.append({
            "id": f"{number}-{period}-{i}",
            "name": stop_name or "",
            "latitude": lat,
            "longitude": lng,
            "kind": "stop" if stop_name else "waypoint",
        })
    return RouteDefinition.model_validate({
        "route_number": number,
        "name": name,
        "area": "Test",
        "time_period": period,
        "color": color,
        "points": points,
    })


# Line A runs east along lat 7.00 with ~1.1 km between stops. B leaves A at Stop A4
# heading north to Stop B3; C leaves A at Stop A6 and also reaches Stop B3, the long way.
# D and E, ~11 km further north, share no stop: E1 is a 200 m walk from D3.
LINE_A = [(f"Stop A{i + 1}", 7.00, 125.50 + 0.01 * i) for i in range(7)]
LINE_A.insert(1, (None, 7.00, 125.505))

LINE_B = [
    ("Stop A4", 7.00, 125.53),
    ("Stop B1", 7.01, 125.53),
    ("Stop B2", 7.02, 125.53),
    ("Stop B3", 7.03, 125.53),
]

LINE_C = [
    ("STOP A6!", 7.00, 125.55),
    ("Stop C1", 7.03, 125.55),
    ("Stop B3", 7.03, 125.53),
]

LINE_D = [
    ("Stop D1", 7.10, 125.50),
    ("Stop D2", 7.10, 125.51),
    ("Stop D3", 7.10, 125.52),
]

LINE_E = [
    ("Stop E1", 7.1018, 125.52),
    ("Stop E2", 7.11, 125.52),
    ("Stop E3", 7.12, 125.52),
]


@pytest.fixture
def make_route():
    """Factory for hand-built route definitions."""
    return build_route


@pytest.fixture
def route_definitions() -> list[RouteDefinition]:
    return [
        build_route("A", "Line A", LINE_A, color="#ff0000"),
        build_route("B", "Line B", LINE_B, color="#00ff00"),
        build_route("C", "Line C", LINE_C, color="#0000ff"),
        build_route("D", "Line D", LINE_D),
        build_route("E", "Line E", LINE_E),
    ]


@pytest.fixture
def network(route_definitions) -> NetworkSnapshot:
    return build_network(route_definitions)


def coord_of(network: NetworkSnapshot, stop_id: str) -> Coordinate:
    return network.stops[stop_id].coordinate


@pytest.fixture
def single_itinerary(network):
    """Stop A1 -> Stop A5 on line A."""
    return find_route(coord_of(network, "stop-a1"), coord_of(network, "stop-a5"), network)


@pytest.fixture
def transfer_itinerary(network):
    """Stop A1 -> Stop B3, changing from A to B at Stop A4."""
    return find_route(coord_of(network, "stop-a1"), coord_of(network, "stop-b3"), network)


@pytest.fixture
def walking_itinerary(network):
    """Stop D1 -> Stop E3: ride D to Stop D3, walk about 200 m to Stop E1, ride E."""
    return find_route(
        coord_of(network, "stop-d1"), coord_of(network, "stop-e3"), network, walking_transfer_km=0.3
    )


@pytest.fixture
def routes_fixture_dir() -> Path:
    """Path to the route file fixtures (L1-AM, L2-AM)."""
    return Path(__file__).parent / "fixtures" / "routes"
