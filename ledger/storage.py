import itertools
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from .errors import AlreadyProcessedError, ConflictError, InvalidRequestError, NotFoundError
from .models import Event, Role, Transaction, User


VersionKey = tuple[str, int]


def user_key(user_id: int) -> VersionKey:
    return ("user", user_id)


def event_key(event_id: int) -> VersionKey:
    return ("event", event_id)


class InMemoryStorage:
    """Transaction ledger plus the user and event directories it depends on.

    Every write goes through one re-entrant lock. Each user and event carries a
    version counter that moves whenever something affecting its balance or
    budget changes, so callers can validate outside the lock and commit with
    the versions they validated against.
    """

    def __init__(self, seed: bool = True):
        self.users: dict[int, dict] = {}
        self.events: dict[int, dict] = {}
        self.transactions: dict[int, dict] = {}
        self.user_index: dict[int, list[int]] = {}
        self.event_index: dict[int, list[int]] = {}
        self._versions: dict[VersionKey, int] = {}
        self._lock = threading.RLock()
        self._transaction_ids = itertools.count(1)
        self._user_ids = itertools.count(1)
        self._event_ids = itertools.count(1)
        if seed:
            self._seed_data()

    def _seed_data(self):
        for utorid, name, role, verified in (
            ("admin001", "Ada Admin", Role.SUPERUSER, True),
            ("mgr00001", "Morgan Manager", Role.MANAGER, True),
            ("cash0001", "Casey Cashier", Role.CASHIER, True),
            ("alice001", "Alice Regular", Role.REGULAR, True),
            ("bob00001", "Bob Regular", Role.REGULAR, True),
            ("carol001", "Carol Unverified", Role.REGULAR, False),
        ):
            self.add_user(utorid=utorid, name=name, role=role, verified=verified)

    @contextmanager
    def locked(self) -> Iterator[None]:
        with self._lock:
            yield

    def version(self, key: VersionKey) -> int:
        with self._lock:
            return self._versions.get(key, 0)

    def _bump(self, key: VersionKey) -> None:
        self._versions[key] = self._versions.get(key, 0) + 1

    # Users

    def add_user(self, *, utorid: str, name: str, role: Role = Role.REGULAR,
                 verified: bool = False) -> User:
        with self._lock:
            user_id = next(self._user_ids)
            self.users[user_id] = {
                "id": user_id, "utorid": utorid, "name": name, "role": role,
                "verified": verified, "suspicious": False,
                "created_at": datetime.now(timezone.utc),
            }
            self.user_index[user_id] = []
            return User(**self.users[user_id])

    def get_user(self, user_id: int) -> User:
        with self._lock:
            data = self.users.get(user_id)
            if not data:
                raise NotFoundError(f"User {user_id} not found")
            return User(**data)

    def find_user_by_utorid(self, utorid: str) -> Optional[User]:
        with self._lock:
            for data in self.users.values():
                if data["utorid"] == utorid:
                    return User(**data)
        return None

    def update_user(self, user_id: int, **fields) -> User:
        with self._lock:
            data = self.users.get(user_id)
            if not data:
                raise NotFoundError(f"User {user_id} not found")
            data.update(fields)
            return User(**data)

    # Events

    def add_event(self, **fields) -> Event:
        with self._lock:
            event_id = next(self._event_ids)
            self.events[event_id] = {
                "id": event_id, "points_awarded": 0, "organizers": [], "guests": [],
                "published": False, "active": True,
                "created_at": datetime.now(timezone.utc),
                **fields,
            }
            self.event_index[event_id] = []
            return Event(**self.events[event_id])

    def get_event(self, event_id: int) -> Event:
        with self._lock:
            data = self.events.get(event_id)
            if not data:
                raise NotFoundError(f"Event {event_id} not found")
            return Event(**data)

    def update_event(self, event_id: int, **fields) -> Event:
        with self._lock:
            data = self.events.get(event_id)
            if not data:
                raise NotFoundError(f"Event {event_id} not found")
            data.update(fields)
            self._bump(event_key(event_id))
            return Event(**data)

    def remove_event(self, event_id: int) -> None:
        with self._lock:
            if self.event_index.get(event_id):
                raise InvalidRequestError(f"Event {event_id} has transactions attached")
            self.events.pop(event_id, None)
            self.event_index.pop(event_id, None)
            self._bump(event_key(event_id))

    # Transactions

    def get(self, transaction_id: int) -> Transaction:
        with self._lock:
            data = self.transactions.get(transaction_id)
            if not data:
                raise NotFoundError(f"Transaction {transaction_id} not found")
            return Transaction(**data)

    def list_by_user(self, user_id: int) -> list[Transaction]:
        with self._lock:
            return [Transaction(**self.transactions[i]) for i in self.user_index.get(user_id, [])]

    def list_by_event(self, event_id: int) -> list[Transaction]:
        with self._lock:
            return [Transaction(**self.transactions[i]) for i in self.event_index.get(event_id, [])]

    def list_all(self) -> list[Transaction]:
        with self._lock:
            return [Transaction(**data) for data in self.transactions.values()]

    def append(self, record: dict, expected_versions: Optional[dict[VersionKey, int]] = None) -> int:
        return self.commit([record], expected_versions)[0].id

    def commit(
        self,
        records: list[dict],
        expected_versions: Optional[dict[VersionKey, int]] = None,
        event_awards: Optional[dict[int, int]] = None,
        link_pair: bool = False,
    ) -> list[Transaction]:
        """Append all records and event counters as one unit, or nothing.

        ``link_pair`` points two records at each other through ``related_id``
        once their ids are known.
        """
        if link_pair and len(records) != 2:
            raise ValueError("link_pair requires exactly two records")

        with self._lock:
            for key, expected in (expected_versions or {}).items():
                current = self._versions.get(key, 0)
                if current != expected:
                    raise ConflictError(
                        f"{key[0].capitalize()} {key[1]} changed during commit "
                        f"(expected version {expected}, found {current})"
                    )

            now = datetime.now(timezone.utc)
            stored = []
            for record in records:
                data = {
                    "spent": None, "related_id": None, "processed": None,
                    "processed_by": None, "processed_at": None,
                    "suspicious": False, "remark": "", "created_at": now,
                    **record,
                    "id": next(self._transaction_ids),
                }
                stored.append(data)

            if link_pair:
                stored[0]["related_id"] = stored[1]["id"]
                stored[1]["related_id"] = stored[0]["id"]

            for data in stored:
                self.transactions[data["id"]] = data
                self.user_index.setdefault(data["user_id"], []).append(data["id"])
                self._bump(user_key(data["user_id"]))

            for event_id, points in (event_awards or {}).items():
                self.events[event_id]["points_awarded"] += points
                self._bump(event_key(event_id))
                for data in stored:
                    if data["related_id"] == event_id:
                        self.event_index.setdefault(event_id, []).append(data["id"])

            return [Transaction(**data) for data in stored]

    def mark_suspicious(self, transaction_id: int, suspicious: bool) -> Transaction:
        with self._lock:
            data = self.transactions.get(transaction_id)
            if not data:
                raise NotFoundError(f"Transaction {transaction_id} not found")
            if data["suspicious"] != suspicious:
                data["suspicious"] = suspicious
                self._bump(user_key(data["user_id"]))
            return Transaction(**data)

    def mark_processed(self, transaction_id: int, processed_by: int) -> Transaction:
        with self._lock:
            data = self.transactions.get(transaction_id)
            if not data:
                raise NotFoundError(f"Transaction {transaction_id} not found")
            if data["processed"]:
                raise AlreadyProcessedError(f"Transaction {transaction_id} has already been processed")
            data["processed"] = True
            data["processed_by"] = processed_by
            data["processed_at"] = datetime.now(timezone.utc)
            return Transaction(**data)
