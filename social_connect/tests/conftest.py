"""
Pytest configuration for social_connect. Provider credentials come from env so the app
module builds configured adapters; stub adapters stand in for the providers in flow tests.
"""
import os
import threading

os.environ.setdefault("TWITTER_CLIENT_ID", "tw-client-id")
os.environ.setdefault("TWITTER_CLIENT_SECRET", "tw-client-secret")
os.environ.setdefault("LINKEDIN_CLIENT_ID", "li-client-id")
os.environ.setdefault("LINKEDIN_CLIENT_SECRET", "li-client-secret")
os.environ["OAUTH_RATE_LIMIT_INITIATE_PER_MINUTE"] = "0"

import pytest  # noqa: E402

from social_connect.audit import AuditLog  # noqa: E402
from social_connect.config import ProviderConfig  # noqa: E402
from social_connect.orchestrator import FlowOrchestrator  # noqa: E402
from social_connect.providers.base import Identity, ProviderAdapter, TokenSet  # noqa: E402
from social_connect.store import CredentialStore, Provider  # noqa: E402


def make_config(name: str, client_id: str = "cid", client_secret: str = "secret") -> ProviderConfig:
    return ProviderConfig(
        name=name,
        client_id=client_id,
        client_secret=client_secret,
        authorize_url=f"https://{name}.example/authorize",
        token_url=f"https://{name}.example/token",
        userinfo_url=f"https://{name}.example/me",
        scopes=("read", "write"),
        redirect_uri=f"https://app.example/auth/{name}/callback",
    )


class StubAdapter(ProviderAdapter):
    """Records calls; returns canned tokens and identity."""

    def __init__(self, provider: Provider, *, uses_pkce: bool = False, config: ProviderConfig | None = None):
        super().__init__(config or make_config(provider.value))
        self.provider = provider
        self.uses_pkce = uses_pkce
        self.tokens = TokenSet(access_token="tok1", expires_in=7200, refresh_token="ref1")
        self.identity = Identity(external_user_id="42", display_name="Ada")
        self.refreshed = TokenSet(access_token="tok2", expires_in=3600)
        self.exchange_error: Exception | None = None
        self.exchanges: list[tuple[str, str | None]] = []
        self.exchange_delay = 0.0
        self.refresh_error: Exception | None = None
        self._lock = threading.Lock()

    def build_authorization_url(self, state, challenge=None):
        url = f"{self.config.authorize_url}?client_id={self.config.client_id}&state={state}"
        if challenge:
            url += f"&code_challenge={challenge}"
        return url

    def exchange_code_for_tokens(self, code, verifier=None):
        with self._lock:
            self.exchanges.append((code, verifier))
        if self.exchange_delay:
            threading.Event().wait(self.exchange_delay)
        if self.exchange_error is not None:
            raise self.exchange_error
        return self.tokens

    def refresh_tokens(self, refresh_token):
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.refreshed

    def fetch_identity(self, access_token):
        return self.identity


@pytest.fixture
def store():
    return CredentialStore(pending_ttl=600, credential_retention=3 * 60 * 60)


@pytest.fixture
def twitter_stub():
    return StubAdapter(Provider.TWITTER, uses_pkce=True)


@pytest.fixture
def linkedin_stub():
    return StubAdapter(Provider.LINKEDIN)


@pytest.fixture
def orchestrator(store, twitter_stub, linkedin_stub):
    return FlowOrchestrator(
        store,
        {Provider.TWITTER: twitter_stub, Provider.LINKEDIN: linkedin_stub},
        AuditLog(),
    )
