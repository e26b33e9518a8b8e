"""Navigation store: the single mutable cell around the pure navigation state machine.

Owns the current `NavigationState`, the location tracker feeding it, and the
observers notified after every state change.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import AsyncIterator, Callable, Optional, Sequence

from dcbus import navigation as nav
from dcbus.location import LocationTracker
from dcbus.models import (
    TERMINAL_STATUSES,
    Coordinate,
    Itinerary,
    NavigationMilestone,
    NavigationSession,
    NavigationStateResponse,
    NavigationStatus,
    PlanningStatus,
    RideProgress,
    Segment,
    TripData,
)

logger = logging.getLogger("dcbus.nav_service")

Listener = Callable[[nav.NavigationState], None]


class NavigationStore:
    """Manages the rider's planning state and active navigation session."""

    def __init__(self):
        self._state = nav.NavigationState()
        self._listeners: list[Listener] = []
        self.tracker = LocationTracker(on_update=self.update_location)

    @property
    def state(self) -> nav.NavigationState:
        if self._state.is_tracking != self.tracker.is_tracking:
            self._state = replace(self._state, is_tracking=self.tracker.is_tracking)
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register an observer. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, event: nav.NavigationEvent) -> nav.NavigationState:
        previous = self.state
        self._state = nav.apply(previous, event)

        if self._state is not previous:
            self._log_transition(previous, self._state)
            for listener in list(self._listeners):
                listener(self._state)

        session = self._state.session
        if self.tracker.is_tracking and session is not None and session.status in TERMINAL_STATUSES:
            self.stop_tracking()
        return self._state

    def _log_transition(self, before: nav.NavigationState, after: nav.NavigationState) -> None:
        old = before.session.status if before.session else None
        new = after.session.status if after.session else None
        if old != new:
            sid = after.session.id if after.session else before.session.id
            logger.info(f"Navigation {sid}: {old.value if old else None} -> {new.value if new else None}")

    # --- Planning ---

    def set_origin(self, coordinate: Optional[Coordinate]):
        return self.dispatch(nav.SetOrigin(coordinate))

    def set_destination(self, coordinate: Optional[Coordinate]):
        return self.dispatch(nav.SetDestination(coordinate))

    def set_route_options(self, options: Sequence[Itinerary]):
        return self.dispatch(nav.SetRouteOptions(tuple(options)))

    def set_planning_status(self, status: PlanningStatus):
        return self.dispatch(nav.SetPlanningStatus(status))

    def select_route(self, itinerary: Itinerary):
        state = self.dispatch(nav.SelectRoute(itinerary))
        logger.info(f"Route option selected: {state.session.id} via {itinerary.type.value}")
        return state

    # --- Navigation ---

    def start_navigation(self, itinerary: Itinerary):
        state = self.dispatch(nav.StartNavigation(itinerary))
        logger.info(
            f"Navigation session created: {state.session.id} "
            f"({len(state.session.milestones)} milestones)"
        )
        return state

    def update_location(self, coordinate: Coordinate):
        return self.dispatch(nav.UpdateLocation(coordinate))

    def complete_milestone(self, milestone_id: str):
        return self.dispatch(nav.CompleteMilestone(milestone_id))

    def advance_to_next_milestone(self):
        return self.dispatch(nav.AdvanceToNextMilestone())

    def mark_at_stop(self):
        return self.dispatch(nav.MarkAtStop())

    def mark_on_bus(self):
        return self.dispatch(nav.MarkOnBus())

    def mark_dropped_off(self):
        return self.dispatch(nav.MarkDroppedOff())

    def mark_at_transfer(self):
        return self.dispatch(nav.MarkAtTransfer())

    def set_status(self, status: NavigationStatus):
        return self.dispatch(nav.SetStatus(status))

    def cancel_navigation(self):
        self.stop_tracking()
        return self.dispatch(nav.CancelNavigation())

    def reset(self):
        self.stop_tracking()
        return self.dispatch(nav.Reset())

    # --- Location tracking ---

    def start_tracking(self, source: AsyncIterator[Coordinate]):
        return self.tracker.start(source)

    def stop_tracking(self) -> None:
        self.tracker.stop()

    @property
    def is_tracking(self) -> bool:
        return self.tracker.is_tracking

    # --- Read-only views ---

    @property
    def session(self) -> Optional[NavigationSession]:
        return self._state.session

    @property
    def current_milestone(self) -> Optional[NavigationMilestone]:
        return nav.get_current_milestone(self._state)

    @property
    def next_milestone(self) -> Optional[NavigationMilestone]:
        return nav.get_next_milestone(self._state)

    @property
    def remaining_milestones(self) -> list[NavigationMilestone]:
        return nav.get_remaining_milestones(self._state)

    @property
    def completed_milestones(self) -> list[NavigationMilestone]:
        return nav.get_completed_milestones(self._state)

    @property
    def current_ride(self) -> Optional[Segment]:
        return nav.get_current_ride(self._state)

    @property
    def drop_off_milestone(self) -> Optional[NavigationMilestone]:
        return nav.get_drop_off_milestone(self._state)

    @property
    def progress(self) -> Optional[RideProgress]:
        return nav.get_progress(self._state)

    def waiting_seconds(self, now: Optional[datetime] = None) -> Optional[int]:
        return nav.get_waiting_seconds(self._state, now)

    def trip_data(self, now: Optional[datetime] = None) -> Optional[TripData]:
        if self._state.session is None:
            return None
        return nav.extract_trip_data(self._state.session, now)

    def snapshot(self) -> NavigationStateResponse:
        """Everything a rendering layer polls, in one payload."""
        state = self.state
        return NavigationStateResponse(
            planning_status=state.planning_status,
            is_navigating=state.is_navigating,
            is_tracking=self.is_tracking,
            session=state.session,
            current_ride_index=state.current_ride_index,
            waiting_started_at=state.waiting_started_at,
            current_milestone=self.current_milestone,
            next_milestone=self.next_milestone,
            drop_off_milestone=self.drop_off_milestone,
            current_ride=self.current_ride,
            progress=self.progress,
        )
