"""
Explicit user consent management.

Consent is scoped to a purpose, a set of data types and a requester, and is
time-boxed. Grants are checked lazily: an expired grant is dropped and
recorded the first time a validity check touches it.
"""

import builtins
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from .. import metrics
from ..exceptions import ConsentError
from ..models import SecurityContext, to_utc, utc_now

logger = logging.getLogger(__name__)

SENSITIVE_DATA_TYPES = frozenset({"health", "financial", "biometric", "location"})


class ConsentConditionType(Enum):
    PURPOSE_LIMITATION = "purpose_limitation"
    DATA_MINIMIZATION = "data_minimization"
    RETENTION_LIMIT = "retention_limit"


class ConsentAction(Enum):
    GRANTED = "granted"
    DENIED = "denied"
    REVOKED = "revoked"
    EXPIRED = "expired"


@dataclass
class ConsentCondition:
    """Restriction attached to a grant; retention limits are timedeltas."""

    type: ConsentConditionType
    value: Any
    description: str = ""


@dataclass
class ConsentRequest:
    id: str
    purpose: str
    data_types: builtins.list[str]
    requester: str
    context: SecurityContext
    duration: timedelta | None = None


@dataclass
class ConsentDecision:
    granted: bool
    conditions: builtins.list[ConsentCondition] = field(default_factory=list)
    expires_at: datetime | None = None
    revocable: bool = True


@dataclass
class StoredConsent:
    """Consent as held by the manager."""

    id: str
    purpose: str
    data_types: builtins.list[str]
    requester: str
    granted: bool
    granted_at: datetime
    context: SecurityContext
    expires_at: datetime | None = None
    conditions: builtins.list[ConsentCondition] = field(default_factory=list)
    revocable: bool = True

    @property
    def user_id(self) -> str:
        return self.context.user_id


@dataclass
class ConsentRecord:
    consent: StoredConsent
    action: ConsentAction
    timestamp: datetime = field(default_factory=utc_now)


class ConsentPrompt(ABC):
    """Presents a consent request to the user and returns their answer."""

    @abstractmethod
    async def present(self, request: ConsentRequest) -> ConsentDecision:
        pass


class DefaultConsentPrompt(ConsentPrompt):
    """Non-interactive prompt that grants every request.

    Sensitive data types (health, financial, biometric, location) get a 24 hour
    grant with a matching retention limit; everything else gets seven days.
    A duration on the request shortens the grant.
    """

    SENSITIVE_DURATION = timedelta(hours=24)
    STANDARD_DURATION = timedelta(days=7)

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock

    async def present(self, request: ConsentRequest) -> ConsentDecision:
        conditions = [
            ConsentCondition(
                type=ConsentConditionType.PURPOSE_LIMITATION,
                value=request.purpose,
                description=f"Data can only be used for: {request.purpose}",
            )
        ]

        sensitive = any(data_type.lower() in SENSITIVE_DATA_TYPES for data_type in request.data_types)
        if sensitive:
            duration = self.SENSITIVE_DURATION
            conditions.append(
                ConsentCondition(
                    type=ConsentConditionType.RETENTION_LIMIT,
                    value=self.SENSITIVE_DURATION,
                    description="Data must be deleted after 24 hours",
                )
            )
        else:
            duration = self.STANDARD_DURATION

        if request.duration is not None:
            duration = min(duration, request.duration)

        return ConsentDecision(
            granted=True,
            conditions=conditions,
            expires_at=to_utc(self._clock()) + duration,
            revocable=True,
        )


class ConsentManager:
    """Stores consent grants and answers validity checks."""

    def __init__(
        self,
        prompt: ConsentPrompt | None = None,
        max_consent_duration: timedelta = timedelta(days=7),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.prompt = prompt or DefaultConsentPrompt(clock=clock)
        self.max_consent_duration = max_consent_duration
        self._clock = clock
        self._active: dict[str, StoredConsent] = {}
        self._history: list[ConsentRecord] = []
        self._lock = threading.RLock()

    async def request_consent(self, request: ConsentRequest) -> ConsentDecision:
        """Reuse a matching valid grant or ask the user through the prompt."""
        if request.context is None or not request.context.user_id:
            raise ConsentError("Consent request has no user context", request_id=request.id)

        with self._lock:
            existing = self._find_existing(request)
            if existing is not None and self._is_valid(existing):
                return ConsentDecision(
                    granted=True,
                    conditions=list(existing.conditions),
                    expires_at=existing.expires_at,
                    revocable=existing.revocable,
                )

        decision = await self.prompt.present(request)
        now = to_utc(self._clock())

        if decision.granted:
            latest = now + self.max_consent_duration
            if decision.expires_at is None or to_utc(decision.expires_at) > latest:
                decision.expires_at = latest

        stored = StoredConsent(
            id=request.id,
            purpose=request.purpose,
            data_types=list(request.data_types),
            requester=request.requester,
            granted=decision.granted,
            granted_at=now,
            context=request.context,
            expires_at=decision.expires_at,
            conditions=list(decision.conditions),
            revocable=decision.revocable,
        )

        with self._lock:
            if decision.granted:
                self._active[request.id] = stored
                self._record(stored, ConsentAction.GRANTED)
            else:
                self._record(stored, ConsentAction.DENIED)

        outcome = "granted" if decision.granted else "denied"
        metrics.consent_decisions.labels(outcome=outcome).inc()
        logger.info("Consent %s %s for user %s (purpose=%s)", request.id, outcome, stored.user_id, request.purpose)
        return decision

    def has_valid_consent(self, purpose: str, data_types: builtins.list[str], user_id: str) -> bool:
        with self._lock:
            for consent in list(self._active.values()):
                if consent.user_id != user_id or not consent.granted:
                    continue
                if consent.purpose != purpose or not all(t in consent.data_types for t in data_types):
                    continue

                if self._is_valid(consent):
                    return True

                del self._active[consent.id]
                self._record(consent, ConsentAction.EXPIRED)
                logger.debug("Consent %s expired for user %s", consent.id, user_id)

        return False

    def revoke_consent(self, consent_id: str, user_id: str) -> bool:
        with self._lock:
            consent = self._active.get(consent_id)
            if consent is None or consent.user_id != user_id or not consent.revocable:
                return False

            del self._active[consent_id]
            self._record(consent, ConsentAction.REVOKED)

        metrics.consent_decisions.labels(outcome="revoked").inc()
        logger.info("Consent %s revoked by user %s", consent_id, user_id)
        return True

    def get_user_consents(self, user_id: str) -> builtins.list[StoredConsent]:
        with self._lock:
            return [c for c in self._active.values() if c.user_id == user_id and c.granted]

    def get_consent_history(self, user_id: str) -> builtins.list[ConsentRecord]:
        with self._lock:
            return [r for r in self._history if r.consent.user_id == user_id]

    def _find_existing(self, request: ConsentRequest) -> StoredConsent | None:
        for consent in self._active.values():
            if (
                consent.user_id == request.context.user_id
                and consent.purpose == request.purpose
                and consent.requester == request.requester
                and all(t in consent.data_types for t in request.data_types)
            ):
                return consent
        return None

    def _is_valid(self, consent: StoredConsent) -> bool:
        if not consent.granted:
            return False

        now = to_utc(self._clock())
        if consent.expires_at is not None and now > to_utc(consent.expires_at):
            return False

        return all(self._evaluate_condition(condition, consent, now) for condition in consent.conditions)

    def _evaluate_condition(self, condition: ConsentCondition, consent: StoredConsent, now: datetime) -> bool:
        if condition.type in (ConsentConditionType.PURPOSE_LIMITATION, ConsentConditionType.DATA_MINIMIZATION):
            # Enforced by the data consumer, not checkable here.
            return True
        if condition.type == ConsentConditionType.RETENTION_LIMIT:
            return now - to_utc(consent.granted_at) < condition.value
        return False

    def _record(self, consent: StoredConsent, action: ConsentAction):
        self._history.append(ConsentRecord(consent=consent, action=action, timestamp=self._clock()))
