"""Trip navigation as a pure state machine.

`apply(state, event)` returns a new `NavigationState` and never mutates its input.
Milestones are the stop visits expected along the chosen itinerary; the session status
moves through walking -> waiting -> riding (-> transferring -> waiting -> riding)
-> completed, or to cancelled from any non-terminal status.

Every event that needs a session is a no-op without one, and the rider confirmations
(at stop, on bus, dropped off, at transfer) are no-ops outside their source status.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Optional, Sequence, Union

from dcbus.config import MILESTONE_PROXIMITY_KM
from dcbus.geo import estimate_duration, haversine_distance
from dcbus.models import (
    TERMINAL_STATUSES,
    Coordinate,
    Itinerary,
    MilestoneType,
    NavigationMilestone,
    NavigationSession,
    NavigationStatus,
    PlanningStatus,
    RideProgress,
    Segment,
    Stop,
    TripData,
)


# --- Milestones ---


def _milestone(order: int, stop: Stop, segment: Segment, kind: MilestoneType) -> NavigationMilestone:
    return NavigationMilestone(
        id=f"milestone-{order}",
        stop_id=stop.id,
        stop_name=stop.name,
        type=kind,
        coordinate=stop.coordinate,
        route_id=segment.route_id,
        route_name=segment.route_name,
        route_color=segment.route_color,
        order=order,
    )


def create_milestones_from_route(itinerary: Itinerary) -> list[NavigationMilestone]:
    """Boarding, intermediates, [transfer, intermediates]..., alighting.

    Only the last segment's alighting stop becomes an alighting milestone; earlier
    alighting stops are the next segment's transfer milestone. When a ride ends with a
    walk to another stop, its alighting stop gets a drop-off milestone of its own.
    """
    milestones: list[NavigationMilestone] = []
    last = len(itinerary.segments) - 1

    for i, segment in enumerate(itinerary.segments):
        kind = MilestoneType.BOARDING if i == 0 else MilestoneType.TRANSFER
        milestones.append(_milestone(len(milestones), segment.boarding_stop, segment, kind))

        for stop in segment.intermediate_stops:
            milestones.append(_milestone(len(milestones), stop, segment, MilestoneType.INTERMEDIATE))

        if i == last:
            milestones.append(
                _milestone(len(milestones), segment.alighting_stop, segment, MilestoneType.ALIGHTING)
            )
        elif segment.walk_to_next_stop is not None:
            milestones.append(
                _milestone(len(milestones), segment.alighting_stop, segment, MilestoneType.DROP_OFF)
            )

    return milestones


def get_status_for_milestone(milestone: NavigationMilestone, is_completed: bool) -> NavigationStatus:
    if milestone.type == MilestoneType.BOARDING:
        return NavigationStatus.RIDING if is_completed else NavigationStatus.WALKING_TO_STOP
    if milestone.type == MilestoneType.TRANSFER:
        return NavigationStatus.RIDING if is_completed else NavigationStatus.TRANSFERRING
    if milestone.type == MilestoneType.ALIGHTING:
        return NavigationStatus.COMPLETED if is_completed else NavigationStatus.RIDING
    if milestone.type == MilestoneType.DROP_OFF:
        return NavigationStatus.TRANSFERRING if is_completed else NavigationStatus.RIDING
    return NavigationStatus.RIDING


def calculate_distance_remaining(
    milestones: Sequence[NavigationMilestone],
    current_index: int,
    user_location: Optional[Coordinate],
) -> float:
    """Rider -> current milestone, then milestone to milestone until the end (km)."""
    if current_index >= len(milestones):
        return 0.0

    total = 0.0
    if user_location is not None:
        total += haversine_distance(user_location, milestones[current_index].coordinate)

    for i in range(current_index, len(milestones) - 1):
        total += haversine_distance(milestones[i].coordinate, milestones[i + 1].coordinate)
    return total


def is_near_milestone(
    location: Coordinate,
    milestone: NavigationMilestone,
    threshold_km: float = MILESTONE_PROXIMITY_KM,
) -> bool:
    return haversine_distance(location, milestone.coordinate) <= threshold_km


def ride_indices(milestones: Sequence[NavigationMilestone]) -> list[int]:
    """Ride (segment) number of each milestone. A transfer milestone starts the next ride;
    a drop-off milestone still belongs to the ride it ends."""
    ride = 0
    result = []
    for m in milestones:
        if m.type == MilestoneType.TRANSFER:
            ride += 1
        result.append(ride)
    return result


def _next_incomplete_index(milestones: Sequence[NavigationMilestone], start: int) -> int:
    for i in range(start, len(milestones)):
        if not milestones[i].completed:
            return i
    return max(len(milestones) - 1, 0)


def _complete(
    milestones: Sequence[NavigationMilestone], indices: Sequence[int], at: datetime
) -> list[NavigationMilestone]:
    targets = set(indices)
    return [
        m.model_copy(update={"completed": True, "completed_at": at})
        if i in targets and not m.completed else m
        for i, m in enumerate(milestones)
    ]


# --- State and events ---


@dataclass(frozen=True)
class NavigationState:
    session: Optional[NavigationSession] = None
    is_navigating: bool = False
    is_tracking: bool = False  # owned by the store; the machine only clears it
    planning_status: PlanningStatus = PlanningStatus.IDLE
    origin: Optional[Coordinate] = None
    destination: Optional[Coordinate] = None
    route_options: tuple[Itinerary, ...] = ()
    current_ride_index: int = 0
    waiting_started_at: Optional[datetime] = None


def _new_session_id() -> str:
    return f"nav-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class StartNavigation:
    itinerary: Itinerary
    session_id: str = field(default_factory=_new_session_id)
    at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class UpdateLocation:
    coordinate: Coordinate
    at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class CompleteMilestone:
    milestone_id: str
    at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class AdvanceToNextMilestone:
    at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class MarkAtStop:
    at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class MarkOnBus:
    at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class MarkDroppedOff:
    at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class MarkAtTransfer:
    at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class SetStatus:
    status: NavigationStatus
    at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class CancelNavigation:
    pass


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class SetOrigin:
    coordinate: Optional[Coordinate]


@dataclass(frozen=True)
class SetDestination:
    coordinate: Optional[Coordinate]


@dataclass(frozen=True)
class SetRouteOptions:
    options: tuple[Itinerary, ...]


@dataclass(frozen=True)
class SelectRoute:
    itinerary: Itinerary
    session_id: str = field(default_factory=_new_session_id)
    at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class SetPlanningStatus:
    status: PlanningStatus


NavigationEvent = Union[
    StartNavigation, UpdateLocation, CompleteMilestone, AdvanceToNextMilestone,
    MarkAtStop, MarkOnBus, MarkDroppedOff, MarkAtTransfer, SetStatus,
    CancelNavigation, Reset, SetOrigin, SetDestination, SetRouteOptions,
    SelectRoute, SetPlanningStatus,
]


# --- Transitions ---


def _active(state: NavigationState) -> Optional[NavigationSession]:
    """The session if it can still change, else None."""
    session = state.session
    if session is None or session.status in TERMINAL_STATUSES:
        return None
    return session


def _start(state: NavigationState, itinerary: Itinerary, session_id: str, at: datetime) -> NavigationState:
    duration = itinerary.estimated_duration_min
    if duration is None:
        duration = estimate_duration(itinerary.total_distance_km)

    session = NavigationSession(
        id=session_id,
        status=NavigationStatus.WALKING_TO_STOP,
        selected_route=itinerary,
        milestones=create_milestones_from_route(itinerary),
        current_milestone_index=0,
        started_at=at,
        estimated_arrival=at + timedelta(minutes=duration),
        distance_remaining_km=itinerary.total_distance_km,
    )
    return replace(
        state,
        session=session,
        is_navigating=True,
        planning_status=PlanningStatus.NAVIGATING,
        current_ride_index=0,
        waiting_started_at=None,
    )


def _complete_milestone(state: NavigationState, milestone_id: str, at: datetime) -> NavigationState:
    session = _active(state)
    if session is None:
        return state

    idx = next((i for i, m in enumerate(session.milestones) if m.id == milestone_id), None)
    if idx is None or session.milestones[idx].completed:
        return state

    completed = session.milestones[idx]
    milestones = _complete(session.milestones, [idx], at)

    if idx == len(milestones) - 1:
        status = NavigationStatus.COMPLETED
    else:
        status = get_status_for_milestone(completed, True)

    ride_index = ride_indices(milestones)[idx]
    if completed.type == MilestoneType.DROP_OFF:
        ride_index += 1
    ride_index = max(state.current_ride_index, ride_index)
    waiting_started_at = state.waiting_started_at
    if status != NavigationStatus.WAITING_FOR_BUS:
        waiting_started_at = None

    session = session.model_copy(update={
        "milestones": milestones,
        "current_milestone_index": _next_incomplete_index(milestones, idx + 1),
        "status": status,
    })
    return replace(
        state,
        session=session,
        current_ride_index=ride_index,
        waiting_started_at=waiting_started_at,
        is_navigating=status not in TERMINAL_STATUSES,
    )


def _update_location(state: NavigationState, coord: Coordinate, at: datetime) -> NavigationState:
    session = _active(state)
    if session is None:
        return state

    current = session.milestones[session.current_milestone_index] if session.milestones else None

    # Only intermediate stops advance on proximity; every other milestone
    # waits for the rider to confirm.
    if (
        current is not None
        and not current.completed
        and current.type == MilestoneType.INTERMEDIATE
        and is_near_milestone(coord, current)
    ):
        state = _complete_milestone(state, current.id, at)
        session = state.session

    remaining = calculate_distance_remaining(
        session.milestones, session.current_milestone_index, coord
    )
    session = session.model_copy(update={"user_location": coord, "distance_remaining_km": remaining})
    return replace(state, session=session)


def _mark_at_stop(state: NavigationState, at: datetime) -> NavigationState:
    session = _active(state)
    if session is None or session.status != NavigationStatus.WALKING_TO_STOP:
        return state
    session = session.model_copy(update={"status": NavigationStatus.WAITING_FOR_BUS})
    return replace(state, session=session, waiting_started_at=at)


def _mark_on_bus(state: NavigationState, at: datetime) -> NavigationState:
    session = _active(state)
    if session is None or session.status != NavigationStatus.WAITING_FOR_BUS:
        return state

    rides = ride_indices(session.milestones)
    board_idx = next(
        (
            i for i, m in enumerate(session.milestones)
            if rides[i] == state.current_ride_index
            and m.type in (MilestoneType.BOARDING, MilestoneType.TRANSFER)
        ),
        None,
    )

    update: dict = {"status": NavigationStatus.RIDING}
    if board_idx is not None:
        milestones = _complete(session.milestones, [board_idx], at)
        update["milestones"] = milestones
        update["current_milestone_index"] = _next_incomplete_index(milestones, board_idx + 1)

    return replace(state, session=session.model_copy(update=update), waiting_started_at=None)


def _mark_dropped_off(state: NavigationState, at: datetime) -> NavigationState:
    session = _active(state)
    if session is None or session.status != NavigationStatus.RIDING:
        return state

    ride = state.current_ride_index
    is_last_ride = ride >= len(session.selected_route.segments) - 1
    rides = ride_indices(session.milestones)

    finished = [
        i for i, m in enumerate(session.milestones)
        if rides[i] == ride and (
            m.type in (MilestoneType.INTERMEDIATE, MilestoneType.DROP_OFF)
            or (is_last_ride and m.type == MilestoneType.ALIGHTING)
        )
    ]
    milestones = _complete(session.milestones, finished, at)

    if is_last_ride:
        status = NavigationStatus.COMPLETED
        next_ride = ride
    else:
        status = NavigationStatus.TRANSFERRING
        next_ride = ride + 1

    session = session.model_copy(update={
        "milestones": milestones,
        "current_milestone_index": _next_incomplete_index(milestones, 0),
        "status": status,
    })
    return replace(
        state,
        session=session,
        current_ride_index=next_ride,
        is_navigating=not is_last_ride,
    )


def _mark_at_transfer(state: NavigationState, at: datetime) -> NavigationState:
    session = _active(state)
    if session is None or session.status != NavigationStatus.TRANSFERRING:
        return state
    session = session.model_copy(update={"status": NavigationStatus.WAITING_FOR_BUS})
    return replace(state, session=session, waiting_started_at=at)


def apply(state: NavigationState, event: NavigationEvent) -> NavigationState:
    """Apply one event and return the resulting state."""
    if isinstance(event, StartNavigation):
        return _start(state, event.itinerary, event.session_id, event.at)
    if isinstance(event, SelectRoute):
        return _start(state, event.itinerary, event.session_id, event.at)
    if isinstance(event, UpdateLocation):
        return _update_location(state, event.coordinate, event.at)
    if isinstance(event, CompleteMilestone):
        return _complete_milestone(state, event.milestone_id, event.at)
    if isinstance(event, AdvanceToNextMilestone):
        session = _active(state)
        if session is None or not session.milestones:
            return state
        current = session.milestones[session.current_milestone_index]
        return _complete_milestone(state, current.id, event.at)
    if isinstance(event, MarkAtStop):
        return _mark_at_stop(state, event.at)
    if isinstance(event, MarkOnBus):
        return _mark_on_bus(state, event.at)
    if isinstance(event, MarkDroppedOff):
        return _mark_dropped_off(state, event.at)
    if isinstance(event, MarkAtTransfer):
        return _mark_at_transfer(state, event.at)
    if isinstance(event, SetStatus):
        session = _active(state)
        if session is None:
            return state
        waiting_started_at = None
        if event.status == NavigationStatus.WAITING_FOR_BUS:
            # Keep the running wait clock when already waiting.
            waiting_started_at = state.waiting_started_at or event.at
        return replace(
            state,
            session=session.model_copy(update={"status": event.status}),
            is_navigating=event.status not in TERMINAL_STATUSES,
            waiting_started_at=waiting_started_at,
        )
    if isinstance(event, CancelNavigation):
        session = _active(state)
        if session is None:
            return state
        return replace(
            state,
            session=session.model_copy(update={"status": NavigationStatus.CANCELLED}),
            is_navigating=False,
            is_tracking=False,
            waiting_started_at=None,
        )
    if isinstance(event, Reset):
        return NavigationState()
    if isinstance(event, SetOrigin):
        return replace(state, origin=event.coordinate)
    if isinstance(event, SetDestination):
        return replace(state, destination=event.coordinate)
    # Planning in the background never pulls an active trip out of navigation.
    if isinstance(event, SetRouteOptions):
        status = PlanningStatus.SELECTING if event.options else PlanningStatus.IDLE
        if _active(state) is not None:
            status = state.planning_status
        return replace(state, route_options=tuple(event.options), planning_status=status)
    if isinstance(event, SetPlanningStatus):
        if _active(state) is not None:
            return state
        return replace(state, planning_status=event.status)
    raise TypeError(f"Unknown navigation event: {event!r}")


# --- Read-only views ---


def get_current_milestone(state: NavigationState) -> Optional[NavigationMilestone]:
    session = state.session
    if session is None or session.current_milestone_index >= len(session.milestones):
        return None
    return session.milestones[session.current_milestone_index]


def get_next_milestone(state: NavigationState) -> Optional[NavigationMilestone]:
    session = state.session
    if session is None or session.current_milestone_index + 1 >= len(session.milestones):
        return None
    return session.milestones[session.current_milestone_index + 1]


def get_remaining_milestones(state: NavigationState) -> list[NavigationMilestone]:
    if state.session is None:
        return []
    return [m for m in state.session.milestones if not m.completed]


def get_completed_milestones(state: NavigationState) -> list[NavigationMilestone]:
    if state.session is None:
        return []
    return [m for m in state.session.milestones if m.completed]


def get_current_ride(state: NavigationState) -> Optional[Segment]:
    if state.session is None:
        return None
    segments = state.session.selected_route.segments
    if state.current_ride_index >= len(segments):
        return None
    return segments[state.current_ride_index]


def get_drop_off_milestone(state: NavigationState) -> Optional[NavigationMilestone]:
    """Where the current ride ends: its drop-off, the next transfer milestone, or the final alighting."""
    if state.session is None:
        return None
    milestones = state.session.milestones
    rides = ride_indices(milestones)
    for i, m in enumerate(milestones):
        if m.type == MilestoneType.DROP_OFF and rides[i] == state.current_ride_index:
            return m
    for i, m in enumerate(milestones):
        if m.type == MilestoneType.TRANSFER and rides[i] == state.current_ride_index + 1:
            return m
    for m in milestones:
        if m.type == MilestoneType.ALIGHTING:
            return m
    return None


def get_progress(state: NavigationState) -> Optional[RideProgress]:
    """Ride N of M."""
    if state.session is None:
        return None
    total = len(state.session.selected_route.segments)
    return RideProgress(current=min(state.current_ride_index + 1, total), total=total)


def get_waiting_seconds(state: NavigationState, now: Optional[datetime] = None) -> Optional[int]:
    if state.waiting_started_at is None:
        return None
    now = now or datetime.now()
    return max(0, int((now - state.waiting_started_at).total_seconds()))


def extract_trip_data(session: NavigationSession, now: Optional[datetime] = None) -> TripData:
    """Summary of a finished (or abandoned) trip for the feedback form."""
    now = now or datetime.now()
    segments = session.selected_route.segments

    return TripData(
        session_id=session.id,
        route_ids=[seg.route_id for seg in segments],
        origin_stop_name=segments[0].boarding_stop.name if segments else "Unknown",
        destination_stop_name=segments[-1].alighting_stop.name if segments else "Unknown",
        trip_duration_minutes=round((now - session.started_at).total_seconds() / 60),
        number_of_rides=len(segments),
    )
