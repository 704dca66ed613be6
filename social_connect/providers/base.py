"""
Provider adapter contract plus the httpx plumbing shared by every provider.
The orchestrator only talks to this interface; provider differences stay in the subclasses.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime
from urllib.parse import urlencode

import httpx

from social_connect.config import HTTP_TIMEOUT, ProviderConfig
from social_connect.errors import ConfigurationError, NetworkError, UpstreamAuthError
from social_connect.store import Provider

logger = logging.getLogger(__name__)

STAGE_TOKEN = "token exchange"
STAGE_REFRESH = "token refresh"
STAGE_IDENTITY = "identity lookup"


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    expires_in: int
    refresh_token: str | None = None
    scope: str | None = None


@dataclass(frozen=True)
class Identity:
    external_user_id: str
    display_name: str
    email: str | None = None


def _retry_after(response: httpx.Response) -> int | None:
    """Seconds until the provider accepts requests again (Retry-After or x-rate-limit-reset)."""
    value = (response.headers.get("retry-after") or "").strip()
    if value.isdigit():
        return max(1, int(value))
    if value:
        # HTTP-date form, e.g. "Wed, 21 Oct 2026 07:28:00 GMT"
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            when = None
        if when is not None:
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            return max(1, int(when.timestamp() - time.time()))
    reset = response.headers.get("x-rate-limit-reset")
    if reset and reset.strip().isdigit():
        return max(1, int(reset.strip()) - int(time.time()))
    return None


class ProviderAdapter(ABC):
    provider: Provider
    uses_pkce = False

    def __init__(self, config: ProviderConfig, timeout: float = HTTP_TIMEOUT):
        self.config = config
        self.timeout = timeout

    @property
    def name(self) -> str:
        return self.provider.value

    def ensure_configured(self) -> None:
        if not self.config.is_configured:
            raise ConfigurationError(self.name)

    @abstractmethod
    def build_authorization_url(self, state: str, challenge: str | None = None) -> str:
        """Provider consent URL embedding state (and the PKCE challenge where used)."""

    @abstractmethod
    def exchange_code_for_tokens(self, code: str, verifier: str | None = None) -> TokenSet:
        """Exchange an authorization code at the provider's token endpoint."""

    @abstractmethod
    def refresh_tokens(self, refresh_token: str) -> TokenSet:
        """Exchange a refresh token for a new access token."""

    @abstractmethod
    def fetch_identity(self, access_token: str) -> Identity:
        """Look up the account behind access_token."""

    def _authorize_url(self, params: dict) -> str:
        base = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": self.config.scope,
        }
        base.update(params)
        return f"{self.config.authorize_url}?{urlencode(base)}"

    def _post_form(self, stage: str, data: dict, auth: tuple[str, str] | None = None) -> dict:
        try:
            r = httpx.post(
                self.config.token_url,
                data=data,
                auth=auth,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise NetworkError(self.name, stage, e) from e
        return self._json_or_raise(stage, r)

    def _get_json(self, stage: str, url: str, access_token: str) -> dict:
        try:
            r = httpx.get(
                url,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise NetworkError(self.name, stage, e) from e
        return self._json_or_raise(stage, r)

    def _json_or_raise(self, stage: str, r: httpx.Response) -> dict:
        if not 200 <= r.status_code < 300:
            retry_after = _retry_after(r) if r.status_code == 429 else None
            raise UpstreamAuthError(self.name, stage, r.status_code, r.text or "", retry_after)
        try:
            data = r.json()
        except ValueError:
            raise UpstreamAuthError(self.name, stage, r.status_code, r.text or "") from None
        if not isinstance(data, dict):
            raise UpstreamAuthError(self.name, stage, r.status_code, r.text or "")
        return data

    def _token_set(self, stage: str, data: dict) -> TokenSet:
        access_token = data.get("access_token")
        expires_in = data.get("expires_in")
        try:
            expires_in = int(expires_in)
        except (TypeError, ValueError):
            expires_in = 0
        if not access_token or expires_in <= 0:
            logger.warning("%s %s returned incomplete payload (keys=%s)", self.name, stage, sorted(data))
            raise UpstreamAuthError(self.name, stage, 200, "incomplete token payload")
        return TokenSet(
            access_token=access_token,
            expires_in=expires_in,
            refresh_token=data.get("refresh_token") or None,
            scope=data.get("scope") or None,
        )
