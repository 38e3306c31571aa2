"""
State stores for the authorization engine.

Decisions, security events and behavior profiles are kept behind small store
interfaces so a deployment can back them with an external system. The
in-memory implementations are thread-safe and are the defaults.
"""

import builtins
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from .models import AccessDecision, SecurityEvent, UserBehaviorProfile, to_utc


class DecisionStore(ABC):
    """Cache of granted access decisions keyed by request id."""

    @abstractmethod
    def put(self, request_id: str, decision: AccessDecision, user_id: str | None = None) -> None:
        pass

    @abstractmethod
    def get(self, request_id: str) -> AccessDecision | None:
        pass

    @abstractmethod
    def delete(self, request_id: str) -> bool:
        pass

    @abstractmethod
    def delete_for_user(self, user_id: str) -> int:
        """Remove every decision recorded for a user; returns how many were removed."""


class EventStore(ABC):
    """Append-only, time-pruned security event history."""

    @abstractmethod
    def append(self, event: SecurityEvent, cutoff: datetime) -> None:
        """Store an event and drop everything not newer than cutoff."""

    @abstractmethod
    def since(self, cutoff: datetime) -> builtins.list[SecurityEvent]:
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class ProfileStore(ABC):
    """Per-user behavior profiles with a lock per user."""

    @abstractmethod
    def get_or_create(self, user_id: str) -> UserBehaviorProfile:
        pass

    @abstractmethod
    def get(self, user_id: str) -> UserBehaviorProfile | None:
        pass

    @abstractmethod
    def lock(self, user_id: str) -> Iterator[None]:
        """Context manager holding the user's profile lock."""

    @abstractmethod
    def __len__(self) -> int:
        pass


class InMemoryDecisionStore(DecisionStore):
    def __init__(self):
        self._decisions: dict[str, AccessDecision] = {}
        self._owners: dict[str, str] = {}
        self._by_user: dict[str, set[str]] = defaultdict(set)
        self._lock = threading.RLock()

    def put(self, request_id: str, decision: AccessDecision, user_id: str | None = None) -> None:
        with self._lock:
            self._forget(request_id)
            self._decisions[request_id] = decision
            if user_id:
                self._owners[request_id] = user_id
                self._by_user[user_id].add(request_id)

    def get(self, request_id: str) -> AccessDecision | None:
        with self._lock:
            return self._decisions.get(request_id)

    def delete(self, request_id: str) -> bool:
        with self._lock:
            if request_id not in self._decisions:
                return False
            self._forget(request_id)
            return True

    def delete_for_user(self, user_id: str) -> int:
        with self._lock:
            request_ids = list(self._by_user.get(user_id, ()))
            for request_id in request_ids:
                self._forget(request_id)
            return len(request_ids)

    def _forget(self, request_id: str) -> None:
        self._decisions.pop(request_id, None)
        owner = self._owners.pop(request_id, None)
        if owner is not None:
            ids = self._by_user.get(owner)
            if ids is not None:
                ids.discard(request_id)
                if not ids:
                    del self._by_user[owner]

    def __len__(self) -> int:
        with self._lock:
            return len(self._decisions)


class InMemoryEventStore(EventStore):
    def __init__(self):
        self._events: list[SecurityEvent] = []
        self._lock = threading.Lock()

    def append(self, event: SecurityEvent, cutoff: datetime) -> None:
        cutoff = to_utc(cutoff)
        with self._lock:
            self._events.append(event)
            self._events = [e for e in self._events if to_utc(e.timestamp) > cutoff]

    def since(self, cutoff: datetime) -> builtins.list[SecurityEvent]:
        cutoff = to_utc(cutoff)
        with self._lock:
            snapshot = list(self._events)
        return [e for e in snapshot if to_utc(e.timestamp) > cutoff]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class InMemoryProfileStore(ProfileStore):
    def __init__(self):
        self._profiles: dict[str, UserBehaviorProfile] = {}
        self._user_locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def get_or_create(self, user_id: str) -> UserBehaviorProfile:
        with self._registry_lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                profile = UserBehaviorProfile(user_id=user_id)
                self._profiles[user_id] = profile
            return profile

    def get(self, user_id: str) -> UserBehaviorProfile | None:
        with self._registry_lock:
            return self._profiles.get(user_id)

    @contextmanager
    def lock(self, user_id: str) -> Iterator[None]:
        with self._registry_lock:
            user_lock = self._user_locks.setdefault(user_id, threading.RLock())
        with user_lock:
            yield

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._profiles)
