from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


# --- Route definitions (ingested once at startup) ---


class RoutePointKind(str, Enum):
    STOP = "stop"
    WAYPOINT = "waypoint"


class RoutePoint(BaseModel):
    """One point of a route file. Accepts `latitude`/`longitude` as in the route files."""
    id: Optional[str] = None
    name: Optional[str] = None
    lat: float = Field(validation_alias=AliasChoices("lat", "latitude"))
    lng: float = Field(validation_alias=AliasChoices("lng", "longitude"))
    kind: RoutePointKind = RoutePointKind.STOP
    heading: float = 0.0


class RouteDefinition(BaseModel):
    route_number: str = Field(validation_alias=AliasChoices("route_number", "routeNumber"))
    time_period: str = Field(validation_alias=AliasChoices("time_period", "timePeriod"))
    area: str = ""
    color: str = "#3388ff"
    name: str = Field("", validation_alias=AliasChoices("name", "display_name", "displayName"))
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    points: list[RoutePoint] = Field(default_factory=list)

    @property
    def route_id(self) -> str:
        return f"{self.route_number}-{self.time_period}"


# --- Network snapshot entities ---


class Stop(BaseModel):
    """A physical stop, identified by its normalized display name."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    coordinate: Coordinate
    route_ids: tuple[str, ...] = ()


class Route(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str  # e.g. "R103-AM"
    name: str  # e.g. "R103 - Toril - Roxas"
    color: str
    description: str = ""
    area: str = ""
    time_period: str = ""
    polyline: tuple[Coordinate, ...] = ()  # stops and waypoints, file order


class StopDistance(BaseModel):
    stop: Stop
    distance_km: float


# --- Itineraries ---


class ItineraryType(str, Enum):
    SINGLE = "single"
    TRANSFER = "transfer"


class WalkingTransfer(BaseModel):
    from_stop: Stop
    to_stop: Stop
    distance_meters: int


class Segment(BaseModel):
    """One continuous ride on a single route."""
    route_id: str
    route_name: str
    route_color: str
    boarding_stop: Stop
    alighting_stop: Stop
    intermediate_stops: list[Stop] = Field(default_factory=list)
    stops_count: int  # includes boarding and alighting
    distance_km: float
    walk_to_next_stop: Optional[WalkingTransfer] = None


class Itinerary(BaseModel):
    type: ItineraryType
    segments: list[Segment]
    total_stops: int
    total_distance_km: float
    transfer_points: list[Stop] = Field(default_factory=list)
    estimated_duration_min: Optional[int] = None


# --- Navigation ---


class NavigationStatus(str, Enum):
    WALKING_TO_STOP = "walking_to_stop"
    WAITING_FOR_BUS = "waiting_for_bus"
    RIDING = "riding"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({NavigationStatus.COMPLETED, NavigationStatus.CANCELLED})


class PlanningStatus(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    SELECTING = "selecting"
    NAVIGATING = "navigating"


class MilestoneType(str, Enum):
    BOARDING = "boarding"
    INTERMEDIATE = "intermediate"
    TRANSFER = "transfer"
    ALIGHTING = "alighting"
    DROP_OFF = "drop_off"  # end of a ride followed by a walk to the next route


class NavigationMilestone(BaseModel):
    id: str
    stop_id: str
    stop_name: str
    type: MilestoneType
    coordinate: Coordinate
    route_id: str
    route_name: str
    route_color: str
    order: int
    completed: bool = False
    completed_at: Optional[datetime] = None


class NavigationSession(BaseModel):
    id: str
    status: NavigationStatus = NavigationStatus.WALKING_TO_STOP
    selected_route: Itinerary
    milestones: list[NavigationMilestone]
    current_milestone_index: int = 0
    user_location: Optional[Coordinate] = None
    started_at: datetime
    estimated_arrival: Optional[datetime] = None
    distance_remaining_km: float = 0.0


class RideProgress(BaseModel):
    current: int
    total: int


class TripData(BaseModel):
    """Trip summary handed to the feedback collaborator once a session ends."""
    session_id: str
    route_ids: list[str]
    origin_stop_name: str
    destination_stop_name: str
    trip_duration_minutes: int
    number_of_rides: int


# --- API payloads ---


class RouteSearchRequest(BaseModel):
    origin: Coordinate
    destination: Coordinate
    max_transfers: int = 1


class AllRoutesRequest(BaseModel):
    origin: Coordinate
    destination: Coordinate
    max_results: Optional[int] = None


class SelectRouteRequest(BaseModel):
    index: int = Field(0, ge=0)  # position in the last /routes/all result


class RouteSummary(BaseModel):
    id: str
    name: str
    color: str
    description: str
    stop_count: int


class RouteDetail(BaseModel):
    route: Route
    stops: list[Stop]
    geometry: dict  # GeoJSON LineString


class StartNavigationRequest(BaseModel):
    itinerary: Itinerary


class NavigationStateResponse(BaseModel):
    planning_status: PlanningStatus
    is_navigating: bool
    is_tracking: bool = False
    session: Optional[NavigationSession] = None
    current_ride_index: int = 0
    waiting_started_at: Optional[datetime] = None
    current_milestone: Optional[NavigationMilestone] = None
    next_milestone: Optional[NavigationMilestone] = None
    drop_off_milestone: Optional[NavigationMilestone] = None
    current_ride: Optional[Segment] = None
    progress: Optional[RideProgress] = None
