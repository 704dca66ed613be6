"""
In-memory store for pending authorization flows (state -> provider, code_verifier)
and linked platform credentials ((provider, external user id) -> tokens).
One instance per process, created at startup and injected into the orchestrator.
Every lock section is a single map operation; nothing here does I/O.
"""
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from social_connect.errors import UnknownProvider


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Provider(str, Enum):
    TWITTER = "twitter"
    LINKEDIN = "linkedin"

    @classmethod
    def parse(cls, value: "str | Provider") -> "Provider":
        try:
            return cls(value)
        except ValueError:
            raise UnknownProvider(str(value)) from None


@dataclass(frozen=True)
class PendingFlow:
    state_token: str
    provider: Provider
    created_at: datetime
    code_verifier: str | None = None

    def expired(self, now: datetime, ttl_seconds: int) -> bool:
        return (now - self.created_at) > timedelta(seconds=ttl_seconds)


@dataclass(frozen=True)
class PlatformCredential:
    provider: Provider
    external_user_id: str
    display_name: str
    access_token: str
    issued_at: datetime
    expires_at: datetime
    refresh_token: str | None = None
    email: str | None = None
    scope: str | None = None

    def __post_init__(self):
        if self.expires_at <= self.issued_at:
            raise ValueError("expires_at must be later than issued_at")

    def is_connected(self, now: datetime) -> bool:
        """A credential counts as connected only while it holds an unexpired access token."""
        return bool(self.access_token) and now < self.expires_at

    def expires_in(self, now: datetime) -> int:
        return max(0, int((self.expires_at - now).total_seconds()))

    def expired_or_soon(self, now: datetime, buffer_seconds: int = 60) -> bool:
        """
        True if the access token is expired or within buffer_seconds of expiry (for proactive refresh).
        When the token lifetime is shorter than buffer_seconds, only True once actually expired.
        """
        if now >= self.expires_at:
            return True
        lifetime = (self.expires_at - self.issued_at).total_seconds()
        if lifetime > buffer_seconds and (self.expires_at - now).total_seconds() <= buffer_seconds:
            return True
        return False

    def status(self, now: datetime) -> dict:
        """Summary without any token material."""
        return {
            "provider": self.provider.value,
            "user_id": self.external_user_id,
            "display_name": self.display_name,
            "email": self.email,
            "connected": self.is_connected(now),
            "expires_at": self.expires_at.isoformat(),
            "has_refresh_token": bool(self.refresh_token),
        }


@dataclass(frozen=True)
class SweepResult:
    pending: int = 0
    credentials: int = 0


class CredentialStore:
    def __init__(self, pending_ttl: int, credential_retention: int):
        self.pending_ttl = pending_ttl
        self.credential_retention = credential_retention
        self._pending: dict[str, PendingFlow] = {}
        self._credentials: dict[tuple[Provider, str], PlatformCredential] = {}
        self._lock = threading.Lock()

    def put_pending_flow(self, token: str, flow: PendingFlow) -> None:
        with self._lock:
            self._pending[token] = flow

    def take_pending_flow(self, token: str, now: datetime | None = None) -> PendingFlow | None:
        """
        Remove and return the flow for token. At most one caller ever sees a given flow.
        An expired flow is discarded and reported as absent, same as a token never issued.
        """
        with self._lock:
            flow = self._pending.pop(token, None)
        if flow is None or flow.expired(now or utcnow(), self.pending_ttl):
            return None
        return flow

    def has_pending_flow(self, token: str) -> bool:
        with self._lock:
            return token in self._pending

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def put_credential(self, provider: Provider, external_user_id: str, credential: PlatformCredential) -> None:
        with self._lock:
            self._credentials[(provider, external_user_id)] = credential

    def get_credential(self, provider: Provider, external_user_id: str) -> PlatformCredential | None:
        with self._lock:
            return self._credentials.get((provider, external_user_id))

    def replace_credential(
        self,
        provider: Provider,
        external_user_id: str,
        expected: PlatformCredential,
        new: PlatformCredential,
    ) -> bool:
        """Store new only if the entry still holds expected. False when it was deleted or replaced meanwhile."""
        key = (provider, external_user_id)
        with self._lock:
            if self._credentials.get(key) is not expected:
                return False
            self._credentials[key] = new
            return True

    def delete_credential(self, provider: Provider, external_user_id: str) -> bool:
        with self._lock:
            return self._credentials.pop((provider, external_user_id), None) is not None

    def list_credentials(self, provider: Provider | None = None) -> list[PlatformCredential]:
        with self._lock:
            creds = list(self._credentials.values())
        if provider is None:
            return creds
        return [c for c in creds if c.provider == provider]

    def sweep_expired(self, now: datetime, *, pending: bool = True, credentials: bool = True) -> SweepResult:
        """Drop pending flows past pending_ttl and credentials past credential_retention (from issued_at)."""
        removed_pending = removed_creds = 0
        if pending:
            with self._lock:
                stale = [t for t, f in self._pending.items() if f.expired(now, self.pending_ttl)]
                for t in stale:
                    del self._pending[t]
            removed_pending = len(stale)
        if credentials:
            retention = timedelta(seconds=self.credential_retention)
            with self._lock:
                stale_keys = [k for k, c in self._credentials.items() if (now - c.issued_at) > retention]
                for k in stale_keys:
                    del self._credentials[k]
            removed_creds = len(stale_keys)
        return SweepResult(pending=removed_pending, credentials=removed_creds)
