import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from dcbus.config import MAX_ROUTE_RESULTS, SEARCH_RADIUS_KM
from dcbus.geo import find_stops_within_radius
from dcbus.models import (
    AllRoutesRequest,
    Coordinate,
    Itinerary,
    NavigationStateResponse,
    PlanningStatus,
    RouteDetail,
    RouteSearchRequest,
    RouteSummary,
    SelectRouteRequest,
    StartNavigationRequest,
    StopDistance,
    TripData,
)
from dcbus.network import NetworkSnapshot
from dcbus.navigation_service import NavigationStore
from dcbus.route_finder import find_all_routes, find_route, get_route_directions

logger = logging.getLogger("dcbus.routes")

router = APIRouter()


def _get_state():
    from dcbus.main import app_state
    return app_state


def _get_network() -> NetworkSnapshot:
    provider = _get_state().get("network")
    if provider is None:
        raise HTTPException(status_code=503, detail="Route network not initialized")
    return provider.get()


def _get_store() -> NavigationStore:
    store = _get_state().get("store")
    if store is None:
        raise HTTPException(status_code=503, detail="Navigation store not initialized")
    return store


@router.get("/health")
async def health():
    state = _get_state()
    provider = state.get("network")
    snapshot = provider.get() if provider else None
    return {
        "status": "ok",
        "service": "DCBus Navigator API",
        "routes": len(snapshot.routes) if snapshot else 0,
        "stops": len(snapshot.stops) if snapshot else 0,
    }


# --- Network ---


@router.get("/network/routes", response_model=list[RouteSummary])
async def list_routes():
    snapshot = _get_network()
    return [
        RouteSummary(
            id=route.id,
            name=route.name,
            color=route.color,
            description=route.description,
            stop_count=len(snapshot.stops_for_route(route.id)),
        )
        for route in snapshot.routes.values()
    ]


@router.get("/network/routes/{route_id}", response_model=RouteDetail)
async def get_route(route_id: str):
    """A route with its ordered stops and GeoJSON polyline."""
    snapshot = _get_network()
    route = snapshot.routes.get(route_id)
    if route is None:
        raise HTTPException(status_code=404, detail=f"Route not found: {route_id}")
    return RouteDetail(
        route=route,
        stops=list(snapshot.stops_for_route(route_id)),
        geometry=snapshot.route_geometry(route_id),
    )


@router.get("/stops/nearby", response_model=list[StopDistance])
async def nearby_stops(
    lat: float = Query(...),
    lng: float = Query(...),
    radius_km: float = Query(SEARCH_RADIUS_KM, gt=0),
):
    snapshot = _get_network()
    return find_stops_within_radius(Coordinate(lat=lat, lng=lng), snapshot.all_stops(), radius_km)


# --- Itineraries ---


@router.post("/routes/find", response_model=Optional[Itinerary])
async def find_itinerary(request: RouteSearchRequest):
    """Best single itinerary, or null when none exists."""
    snapshot = _get_network()
    itinerary = find_route(
        request.origin, request.destination, snapshot, max_transfers=request.max_transfers
    )
    if itinerary is None:
        logger.info("No itinerary found")
    return itinerary


@router.post("/routes/all", response_model=list[Itinerary])
async def find_itineraries(request: AllRoutesRequest):
    """Ranked alternatives. Also records them as the rider's route options."""
    snapshot = _get_network()
    store = _get_store()

    store.set_origin(request.origin)
    store.set_destination(request.destination)
    store.set_planning_status(PlanningStatus.PLANNING)

    options = find_all_routes(
        request.origin,
        request.destination,
        snapshot,
        max_results=request.max_results or MAX_ROUTE_RESULTS,
    )
    store.set_route_options(options)
    return options


@router.post("/routes/select", response_model=NavigationStateResponse)
async def select_itinerary(request: SelectRouteRequest):
    """Start navigating one of the options recorded by /routes/all."""
    store = _get_store()
    options = store.state.route_options
    if request.index >= len(options):
        raise HTTPException(status_code=404, detail=f"No route option at index {request.index}")
    store.stop_tracking()
    store.select_route(options[request.index])
    return store.snapshot()


@router.post("/routes/directions", response_model=list[str])
async def directions(itinerary: Itinerary):
    return get_route_directions(itinerary)


# --- Navigation ---


@router.get("/navigation", response_model=NavigationStateResponse)
async def get_navigation():
    return _get_store().snapshot()


@router.post("/navigation/start", response_model=NavigationStateResponse)
async def start_navigation(request: StartNavigationRequest):
    store = _get_store()
    store.stop_tracking()
    store.start_navigation(request.itinerary)
    return store.snapshot()


@router.post("/navigation/location", response_model=NavigationStateResponse)
async def update_location(coordinate: Coordinate):
    store = _get_store()
    store.update_location(coordinate)
    return store.snapshot()


@router.post("/navigation/milestones/{milestone_id}/complete", response_model=NavigationStateResponse)
async def complete_milestone(milestone_id: str):
    store = _get_store()
    store.complete_milestone(milestone_id)
    return store.snapshot()


@router.get("/navigation/trip-summary", response_model=TripData)
async def trip_summary():
    store = _get_store()
    data = store.trip_data()
    if data is None:
        raise HTTPException(status_code=409, detail="No navigation session")
    return data


_ACTIONS = {
    "at-stop": NavigationStore.mark_at_stop,
    "on-bus": NavigationStore.mark_on_bus,
    "dropped-off": NavigationStore.mark_dropped_off,
    "at-transfer": NavigationStore.mark_at_transfer,
    "advance": NavigationStore.advance_to_next_milestone,
    "cancel": NavigationStore.cancel_navigation,
    "reset": NavigationStore.reset,
}


@router.post("/navigation/{action}", response_model=NavigationStateResponse)
async def navigation_action(action: str):
    """Rider confirmations and session controls. Invalid transitions leave the state unchanged."""
    handler = _ACTIONS.get(action)
    if handler is None:
        raise HTTPException(status_code=404, detail=f"Unknown navigation action: {action}")
    store = _get_store()
    handler(store)
    return store.snapshot()


# --- Live location ---


async def _queued_coordinates(queue: asyncio.Queue, processed: asyncio.Event):
    while True:
        coord = await queue.get()
        if coord is None:
            return
        yield coord
        # Resumed by the tracker asking for the next fix, so `coord` has been applied
        processed.set()


@router.websocket("/ws/location")
async def location_websocket(websocket: WebSocket):
    """Live location for the active session.

    Client sends: {"lat": ..., "lng": ...}
    Server sends: {"type": "navigation_update", "state": ...} after each fix
    """
    store = _get_state().get("store")
    if store is None:
        await websocket.close(code=1011, reason="Navigation service unavailable")
        return

    session = store.session
    if session is None or not store.state.is_navigating:
        await websocket.close(code=1008, reason="No active navigation session")
        return

    await websocket.accept()
    logger.info(f"WebSocket connected for navigation session: {session.id}")

    queue: asyncio.Queue = asyncio.Queue()
    processed = asyncio.Event()
    task = store.start_tracking(_queued_coordinates(queue, processed))
    disconnected = False

    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
                coord = Coordinate(lat=msg["lat"], lng=msg["lng"])
            except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
                await websocket.send_json({"type": "error", "message": f"Invalid location message: {e}"})
                continue

            if task.done():
                break

            processed.clear()
            await queue.put(coord)
            ack = asyncio.create_task(processed.wait())
            await asyncio.wait({ack, task}, return_when=asyncio.FIRST_COMPLETED)
            ack.cancel()

            await websocket.send_json({
                "type": "navigation_update",
                "state": store.snapshot().model_dump(mode="json"),
            })
            if task.done():
                break
    except WebSocketDisconnect:
        disconnected = True
        logger.info(f"WebSocket disconnected for navigation session: {session.id}")
    finally:
        # Still running means this socket's feed is the tracker's current one
        if not task.done():
            store.stop_tracking()

    if not disconnected:
        await websocket.close()
