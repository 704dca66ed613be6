"""
Audit log. Security-relevant connection events only; no tokens, secrets, or provider payloads.
Events are kept in a bounded in-memory buffer (GET /audit) and written to the
`social_connect.audit` logger.
"""
import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

logger = logging.getLogger("social_connect.audit")

EVENT_FLOW_STARTED = "flow_started"
EVENT_STATE_REJECTED = "state_rejected"
EVENT_CALLBACK_DENIED = "callback_denied"
EVENT_CALLBACK_MALFORMED = "callback_malformed"
EVENT_EXCHANGE_FAILED = "exchange_failed"
EVENT_CREDENTIAL_LINKED = "credential_linked"
EVENT_CREDENTIAL_REFRESHED = "credential_refreshed"
EVENT_CREDENTIAL_DISCONNECTED = "credential_disconnected"

OUTCOME_SUCCESS = "success"
OUTCOME_FAIL = "fail"


@dataclass(frozen=True)
class AuditEvent:
    created_at: datetime
    event_type: str
    provider: str | None
    outcome: str
    external_user_id: str | None = None
    reason: str | None = None

    def as_dict(self) -> dict:
        d = asdict(self)
        d["created_at"] = self.created_at.isoformat()
        return d


class AuditLog:
    def __init__(self, maxlen: int = 500):
        self._events: deque[AuditEvent] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def record(
        self,
        event_type: str,
        *,
        provider: str | None = None,
        outcome: str = OUTCOME_SUCCESS,
        external_user_id: str | None = None,
        reason: str | None = None,
    ) -> AuditEvent:
        """Append one audit record. Never pass tokens or secrets as reason."""
        event = AuditEvent(
            created_at=datetime.now(timezone.utc),
            event_type=event_type,
            provider=provider,
            outcome=outcome,
            external_user_id=external_user_id,
            reason=reason,
        )
        with self._lock:
            self._events.append(event)
        level = logging.WARNING if event_type == EVENT_STATE_REJECTED else logging.INFO
        logger.log(
            level,
            "event=%s provider=%s outcome=%s user=%s reason=%s",
            event_type,
            provider,
            outcome,
            external_user_id,
            reason,
        )
        return event

    def query(
        self,
        *,
        limit: int = 100,
        event_type: str | None = None,
        outcome: str | None = None,
        provider: str | None = None,
    ) -> list[dict]:
        """Most recent first, with optional filters."""
        with self._lock:
            events = list(self._events)
        events.reverse()
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        if outcome:
            events = [e for e in events if e.outcome == outcome]
        if provider:
            events = [e for e in events if e.provider == provider]
        return [e.as_dict() for e in events[: max(1, min(limit, 500))]]
