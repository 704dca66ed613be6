"""
Flow orchestrator: initiate -> provider redirect -> callback, for any provider adapter.
Owns state-token validation and single-use consumption. The store is touched before any
provider call, so no lock or pending entry is held while waiting on the network.
"""
import dataclasses
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta

from social_connect.audit import (
    EVENT_CALLBACK_DENIED,
    EVENT_CALLBACK_MALFORMED,
    EVENT_CREDENTIAL_DISCONNECTED,
    EVENT_CREDENTIAL_LINKED,
    EVENT_CREDENTIAL_REFRESHED,
    EVENT_EXCHANGE_FAILED,
    EVENT_FLOW_STARTED,
    EVENT_STATE_REJECTED,
    OUTCOME_FAIL,
    AuditLog,
)
from social_connect.errors import (
    AuthorizationDenied,
    InvalidOrExpiredState,
    MalformedCallback,
    NetworkError,
    NotConnected,
    UpstreamAuthError,
)
from social_connect.pkce import generate_pkce, generate_token
from social_connect.providers.base import ProviderAdapter
from social_connect.store import CredentialStore, PendingFlow, PlatformCredential, Provider, utcnow

logger = logging.getLogger(__name__)

_CALLBACK_FIELDS = ("code", "state", "error", "error_description")


@dataclass(frozen=True)
class CallbackParams:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @classmethod
    def from_query(cls, query: Mapping) -> "CallbackParams":
        """
        Accepts a plain mapping, a parse_qs-style mapping of lists, or a multi-dict
        (Starlette QueryParams). Blank values count as missing; repeated values are rejected.
        """
        values = {}
        for field in _CALLBACK_FIELDS:
            if hasattr(query, "getlist"):
                items = query.getlist(field)
            else:
                raw = query.get(field)
                items = [] if raw is None else list(raw) if isinstance(raw, (list, tuple)) else [raw]
            if len(items) > 1:
                raise MalformedCallback(f"parameter {field!r} given {len(items)} times")
            value = items[0].strip() if items and isinstance(items[0], str) else None
            values[field] = value or None
        return cls(**values)


@dataclass(frozen=True)
class AuthorizationRequest:
    provider: Provider
    url: str
    state: str


class FlowOrchestrator:
    def __init__(
        self,
        store: CredentialStore,
        adapters: Mapping[Provider, ProviderAdapter],
        audit: AuditLog | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.adapters = dict(adapters)
        self.audit = audit or AuditLog()
        self._clock = clock

    def adapter_for(self, provider: "Provider | str") -> ProviderAdapter:
        return self.adapters[Provider.parse(provider)]

    def initiate(self, provider: "Provider | str") -> AuthorizationRequest:
        """Issue a state token (and PKCE pair when the adapter uses PKCE), store the flow, build the URL."""
        provider = Provider.parse(provider)
        adapter = self.adapters[provider]
        adapter.ensure_configured()

        state = generate_token()
        verifier = challenge = None
        if adapter.uses_pkce:
            verifier, challenge = generate_pkce()
        url = adapter.build_authorization_url(state, challenge)
        self.store.put_pending_flow(
            state,
            PendingFlow(state_token=state, provider=provider, created_at=self._clock(), code_verifier=verifier),
        )
        self.audit.record(EVENT_FLOW_STARTED, provider=provider.value)
        return AuthorizationRequest(provider=provider, url=url, state=state)

    def complete_callback(self, provider: "Provider | str", query: "Mapping | CallbackParams") -> PlatformCredential:
        provider = Provider.parse(provider)
        adapter = self.adapters[provider]
        try:
            params = query if isinstance(query, CallbackParams) else CallbackParams.from_query(query)
        except MalformedCallback as e:
            self.audit.record(EVENT_CALLBACK_MALFORMED, provider=provider.value, outcome=OUTCOME_FAIL, reason=str(e))
            raise

        if params.error:
            # Consume the state anyway so it cannot be replayed with a code later
            if params.state:
                self.store.take_pending_flow(params.state, self._clock())
            self.audit.record(
                EVENT_CALLBACK_DENIED, provider=provider.value, outcome=OUTCOME_FAIL, reason=params.error
            )
            raise AuthorizationDenied(params.error, params.error_description)

        if not params.code or not params.state:
            missing = "code" if not params.code else "state"
            self.audit.record(
                EVENT_CALLBACK_MALFORMED, provider=provider.value, outcome=OUTCOME_FAIL, reason=f"missing {missing}"
            )
            raise MalformedCallback(f"missing {missing} parameter")

        flow = self.store.take_pending_flow(params.state, self._clock())
        if flow is None:
            self.audit.record(
                EVENT_STATE_REJECTED, provider=provider.value, outcome=OUTCOME_FAIL, reason="unknown or expired state"
            )
            raise InvalidOrExpiredState("state token not issued by this process, already used, or expired")
        if flow.provider != provider:
            self.audit.record(
                EVENT_STATE_REJECTED,
                provider=provider.value,
                outcome=OUTCOME_FAIL,
                reason=f"state issued for {flow.provider.value}",
            )
            raise InvalidOrExpiredState(f"state issued for {flow.provider.value}, presented to {provider.value}")

        try:
            adapter.ensure_configured()
            tokens = adapter.exchange_code_for_tokens(params.code, flow.code_verifier)
            identity = adapter.fetch_identity(tokens.access_token)
        except (UpstreamAuthError, NetworkError) as e:
            logger.error("%s callback failed: %s", provider.value, e)
            self.audit.record(EVENT_EXCHANGE_FAILED, provider=provider.value, outcome=OUTCOME_FAIL, reason=e.stage)
            raise

        issued_at = self._clock()
        credential = PlatformCredential(
            provider=provider,
            external_user_id=identity.external_user_id,
            display_name=identity.display_name,
            email=identity.email,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            scope=tokens.scope,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=tokens.expires_in),
        )
        self.store.put_credential(provider, identity.external_user_id, credential)
        self.audit.record(EVENT_CREDENTIAL_LINKED, provider=provider.value, external_user_id=identity.external_user_id)
        return credential

    def get_credential(self, provider: "Provider | str", external_user_id: str) -> PlatformCredential | None:
        return self.store.get_credential(Provider.parse(provider), external_user_id)

    def get_connected_credential(
        self,
        provider: "Provider | str",
        external_user_id: str,
        *,
        refresh_buffer_seconds: int = 60,
    ) -> PlatformCredential | None:
        """
        Credential usable for publishing right now, or None.
        Refreshes first when the token is expired or about to expire and a refresh token exists.
        A failed refresh leaves the stored credential as it was; it is returned only while still valid.
        """
        provider = Provider.parse(provider)
        credential = self.store.get_credential(provider, external_user_id)
        if credential is None:
            return None
        if credential.refresh_token and credential.expired_or_soon(self._clock(), refresh_buffer_seconds):
            try:
                credential = self.refresh_credential(provider, external_user_id)
            except NotConnected:
                return None
            except (UpstreamAuthError, NetworkError) as e:
                logger.warning("%s auto-refresh failed for %s: %s", provider.value, external_user_id, e)
        return credential if credential.is_connected(self._clock()) else None

    def refresh_credential(self, provider: "Provider | str", external_user_id: str) -> PlatformCredential:
        """Replace the stored credential using its refresh token. Identity fields are kept."""
        provider = Provider.parse(provider)
        adapter = self.adapters[provider]
        current = self.store.get_credential(provider, external_user_id)
        if current is None or not current.refresh_token:
            raise NotConnected(f"no refreshable {provider.value} credential for {external_user_id}")
        adapter.ensure_configured()
        try:
            tokens = adapter.refresh_tokens(current.refresh_token)
        except (UpstreamAuthError, NetworkError) as e:
            logger.error("%s refresh failed for %s: %s", provider.value, external_user_id, e)
            self.audit.record(
                EVENT_CREDENTIAL_REFRESHED,
                provider=provider.value,
                outcome=OUTCOME_FAIL,
                external_user_id=external_user_id,
                reason=e.stage,
            )
            raise
        issued_at = self._clock()
        refreshed = dataclasses.replace(
            current,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or current.refresh_token,
            scope=tokens.scope or current.scope,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=tokens.expires_in),
        )
        if not self.store.replace_credential(provider, external_user_id, current, refreshed):
            latest = self.store.get_credential(provider, external_user_id)
            if latest is None:
                # disconnected or swept while the provider call was in flight
                raise NotConnected(f"{provider.value} credential for {external_user_id} was removed during refresh")
            # a concurrent refresh or relink won; keep its result
            return latest
        self.audit.record(EVENT_CREDENTIAL_REFRESHED, provider=provider.value, external_user_id=external_user_id)
        return refreshed

    def disconnect(self, provider: "Provider | str", external_user_id: str) -> bool:
        provider = Provider.parse(provider)
        removed = self.store.delete_credential(provider, external_user_id)
        if removed:
            self.audit.record(
                EVENT_CREDENTIAL_DISCONNECTED, provider=provider.value, external_user_id=external_user_id
            )
        return removed
