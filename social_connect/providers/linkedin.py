"""
LinkedIn OAuth 2.0 with OpenID Connect (Sign In with LinkedIn). No PKCE.
Client credentials go in the token request body; identity comes from the userinfo endpoint.
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


class LinkedInAdapter(ProviderAdapter):
    provider = Provider.LINKEDIN

    def build_authorization_url(self, state: str, challenge: str | None = None) -> str:
        # challenge is ignored: LinkedIn's web flow uses the client secret instead
        return self._authorize_url({"state": state})

    def exchange_code_for_tokens(self, code: str, verifier: str | None = None) -> TokenSet:
        data = self._post_form(
            STAGE_TOKEN,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.config.redirect_uri,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
            },
        )
        return self._token_set(STAGE_TOKEN, data)

    def refresh_tokens(self, refresh_token: str) -> TokenSet:
        data = self._post_form(
            STAGE_REFRESH,
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
            },
        )
        return self._token_set(STAGE_REFRESH, data)

    def fetch_identity(self, access_token: str) -> Identity:
        claims = self._get_json(STAGE_IDENTITY, self.config.userinfo_url, access_token)
        sub = claims.get("sub")
        if not sub:
            raise UpstreamAuthError(self.name, STAGE_IDENTITY, 200, "missing sub claim")
        name = claims.get("name") or " ".join(
            p for p in (claims.get("given_name"), claims.get("family_name")) if p
        )
        return Identity(
            external_user_id=str(sub),
            display_name=name or str(sub),
            email=claims.get("email") or None,
        )
