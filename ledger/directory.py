"""
User and event directories.

The ledger reads both to validate transactions: users for existence,
verification and flagged cashiers, events for organizers, guests and the
points budget. Membership changes bump the event's version, so an award
validated against an older guest list fails to commit.
"""

from datetime import datetime, timezone

from loguru import logger

from .authz import Operation, is_allowed, require
from .errors import (
    CapacityExceededError,
    DuplicateMembershipError,
    InvalidAmountError,
    InvalidRequestError,
    NotFoundError,
    UnauthorizedError,
)
from .models import Actor, CreateEventRequest, Event, RegisterUserRequest, Role, User
from .storage import InMemoryStorage


class UserDirectory:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def register_user(self, actor: Actor, request: RegisterUserRequest) -> User:
        require(actor, Operation.REGISTER_USER)
        if request.role != Role.REGULAR:
            if not is_allowed(Operation.REGISTER_STAFF, actor.role) or request.role.rank > actor.role.rank:
                raise UnauthorizedError(
                    f"Role '{actor.role.value}' cannot create '{request.role.value}' accounts"
                )

        with self.storage.locked():
            if self.storage.find_user_by_utorid(request.utorid):
                raise DuplicateMembershipError(f"utorid '{request.utorid}' is already registered")
            user = self.storage.add_user(utorid=request.utorid, name=request.name, role=request.role)

        logger.info("User registered", user_id=user.id, actor_id=actor.user_id, role=user.role.value)
        return user

    def get_user(self, user_id: int) -> User:
        return self.storage.get_user(user_id)

    def verify_user(self, actor: Actor, user_id: int) -> User:
        require(actor, Operation.VERIFY_USER)
        return self.storage.update_user(user_id, verified=True)

    def set_cashier_suspicious(self, actor: Actor, user_id: int, suspicious: bool) -> User:
        require(actor, Operation.FLAG_CASHIER)
        user = self.storage.get_user(user_id)
        if user.role != Role.CASHIER:
            raise InvalidRequestError(f"User {user_id} is not a cashier")
        logger.info("Cashier flag updated", user_id=user_id, actor_id=actor.user_id, suspicious=suspicious)
        return self.storage.update_user(user_id, suspicious=suspicious)


class EventDirectory:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def create_event(self, actor: Actor, request: CreateEventRequest) -> Event:
        require(actor, Operation.MANAGE_EVENTS)
        if request.points_budget < 0:
            raise InvalidAmountError("Points budget cannot be negative")
        if request.end_time <= request.start_time:
            raise InvalidRequestError("Event must end after it starts")
        if request.capacity is not None and request.capacity <= 0:
            raise InvalidRequestError("Capacity must be positive")

        event = self.storage.add_event(
            name=request.name,
            description=request.description,
            location=request.location,
            start_time=request.start_time,
            end_time=request.end_time,
            capacity=request.capacity,
            points_budget=request.points_budget,
            created_by=actor.user_id,
        )
        logger.info("Event created", event_id=event.id, actor_id=actor.user_id, budget=event.points_budget)
        return event

    def get_event(self, event_id: int) -> Event:
        return self.storage.get_event(event_id)

    def view_event(self, actor: Actor, event_id: int) -> Event:
        """Unpublished events are visible only to their organizers and managers."""
        event = self.storage.get_event(event_id)
        if (not event.published and actor.user_id not in event.organizers
                and not is_allowed(Operation.VIEW_UNPUBLISHED_EVENTS, actor.role)):
            raise NotFoundError(f"Event {event_id} not found")
        return event

    def publish(self, actor: Actor, event_id: int) -> Event:
        require(actor, Operation.MANAGE_EVENTS)
        return self.storage.update_event(event_id, published=True)

    def deactivate(self, actor: Actor, event_id: int) -> Event:
        require(actor, Operation.MANAGE_EVENTS)
        return self.storage.update_event(event_id, active=False)

    def delete_event(self, actor: Actor, event_id: int) -> None:
        require(actor, Operation.MANAGE_EVENTS)
        with self.storage.locked():
            self.storage.get_event(event_id)
            if self.storage.list_by_event(event_id):
                raise InvalidRequestError(
                    f"Event {event_id} has awarded points and can only be deactivated"
                )
            self.storage.remove_event(event_id)
        logger.info("Event deleted", event_id=event_id, actor_id=actor.user_id)

    def add_organizer(self, actor: Actor, event_id: int, user_id: int) -> Event:
        require(actor, Operation.MANAGE_EVENTS)
        with self.storage.locked():
            event = self._open_event(event_id)
            self.storage.get_user(user_id)
            if user_id in event.guests:
                raise InvalidRequestError(f"User {user_id} is a guest of event {event_id}; remove them first")
            if user_id in event.organizers:
                raise DuplicateMembershipError(f"User {user_id} already organizes event {event_id}")
            return self.storage.update_event(event_id, organizers=[*event.organizers, user_id])

    def remove_organizer(self, actor: Actor, event_id: int, user_id: int) -> Event:
        require(actor, Operation.MANAGE_EVENTS)
        with self.storage.locked():
            event = self.storage.get_event(event_id)
            if user_id not in event.organizers:
                raise NotFoundError(f"User {user_id} is not an organizer of event {event_id}")
            return self.storage.update_event(
                event_id, organizers=[o for o in event.organizers if o != user_id]
            )

    def add_guest(self, actor: Actor, event_id: int, user_id: int) -> Event:
        with self.storage.locked():
            event = self.storage.get_event(event_id)
            if actor.user_id not in event.organizers and not is_allowed(Operation.MANAGE_EVENT_GUESTS, actor.role):
                raise UnauthorizedError(f"Only organizers of event {event_id} or managers can add guests")
            return self._admit(event_id, user_id)

    def remove_guest(self, actor: Actor, event_id: int, user_id: int) -> Event:
        require(actor, Operation.MANAGE_EVENT_GUESTS)
        return self._release(event_id, user_id)

    def rsvp(self, actor: Actor, event_id: int) -> Event:
        require(actor, Operation.RSVP)
        with self.storage.locked():
            event = self.storage.get_event(event_id)
            if not event.published:
                raise NotFoundError(f"Event {event_id} not found")
            return self._admit(event_id, actor.user_id)

    def cancel_rsvp(self, actor: Actor, event_id: int) -> Event:
        require(actor, Operation.RSVP)
        return self._release(event_id, actor.user_id)

    def _open_event(self, event_id: int) -> Event:
        event = self.storage.get_event(event_id)
        if not event.active:
            raise InvalidRequestError(f"Event {event_id} is no longer active")
        if event.end_time <= datetime.now(timezone.utc):
            raise InvalidRequestError(f"Event {event_id} has already ended")
        return event

    def _admit(self, event_id: int, user_id: int) -> Event:
        event = self._open_event(event_id)
        self.storage.get_user(user_id)
        if user_id in event.organizers:
            raise InvalidRequestError(f"User {user_id} organizes event {event_id} and cannot be a guest")
        if user_id in event.guests:
            raise DuplicateMembershipError(f"User {user_id} is already a guest of event {event_id}")
        if event.is_full():
            raise CapacityExceededError(f"Event {event_id} is full")
        return self.storage.update_event(event_id, guests=[*event.guests, user_id])

    def _release(self, event_id: int, user_id: int) -> Event:
        with self.storage.locked():
            event = self._open_event(event_id)
            if user_id not in event.guests:
                raise NotFoundError(f"User {user_id} is not a guest of event {event_id}")
            return self.storage.update_event(event_id, guests=[g for g in event.guests if g != user_id])
