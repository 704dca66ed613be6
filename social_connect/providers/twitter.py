"""
Twitter/X OAuth 2.0 (authorization code + PKCE S256).
Token endpoint authenticates the client with HTTP Basic (client_id:client_secret).
"""
from social_connect.errors import UpstreamAuthError
from social_connect.providers.base import (
    STAGE_IDENTITY,
    STAGE_REFRESH,
    STAGE_TOKEN,
    Identity,
    ProviderAdapter,
    TokenSet,
)
from social_connect.store import Provider


class TwitterAdapter(ProviderAdapter):
    provider = Provider.TWITTER
    uses_pkce = True

    def _basic_auth(self) -> tuple[str, str]:
        return (self.config.client_id, self.config.client_secret)

    def build_authorization_url(self, state: str, challenge: str | None = None) -> str:
        if not challenge:
            raise ValueError("Twitter requires a PKCE code_challenge")
        return self._authorize_url(
            {
                "state": state,
                "code_challenge": challenge,
                "code_challenge_method": "S256",
            }
        )

    def exchange_code_for_tokens(self, code: str, verifier: str | None = None) -> TokenSet:
        if not verifier:
            raise ValueError("Twitter requires the PKCE code_verifier")
        data = self._post_form(
            STAGE_TOKEN,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.config.redirect_uri,
                "client_id": self.config.client_id,
                "code_verifier": verifier,
            },
            auth=self._basic_auth(),
        )
        return self._token_set(STAGE_TOKEN, data)

    def refresh_tokens(self, refresh_token: str) -> TokenSet:
        data = self._post_form(
            STAGE_REFRESH,
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.config.client_id,
            },
            auth=self._basic_auth(),
        )
        return self._token_set(STAGE_REFRESH, data)

    def fetch_identity(self, access_token: str) -> Identity:
        body = self._get_json(STAGE_IDENTITY, self.config.userinfo_url, access_token)
        user = body.get("data") or {}
        user_id = user.get("id")
        if not user_id:
            raise UpstreamAuthError(self.name, STAGE_IDENTITY, 200, "missing data.id")
        return Identity(
            external_user_id=str(user_id),
            display_name=user.get("username") or user.get("name") or str(user_id),
        )
