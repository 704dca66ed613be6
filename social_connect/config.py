"""
Social Connect configuration. Values come from the environment; nothing secret lives here.
Provider configs are built once at startup and never mutated afterwards.
"""
import os
from dataclasses import dataclass

# Frontend base URL: redirect URIs and post-flow redirects are built from it
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173").rstrip("/")

# Frontend route that receives the callback result (tokens or ?error=...)
CREDENTIALS_PATH = os.environ.get("CREDENTIALS_PATH", "/social-credentials")

# Pending flow lifetime (seconds). A flow is a single browser round-trip to the provider.
PENDING_FLOW_TTL = int(os.environ.get("OAUTH_PENDING_FLOW_TTL", "600"))

# Linked credentials are kept for 3 hours after issue unless refreshed or disconnected
CREDENTIAL_RETENTION = int(os.environ.get("OAUTH_CREDENTIAL_RETENTION", str(3 * 60 * 60)))

# Sweeper intervals (seconds)
PENDING_SWEEP_INTERVAL = int(os.environ.get("OAUTH_PENDING_SWEEP_INTERVAL", "120"))
CREDENTIAL_SWEEP_INTERVAL = int(os.environ.get("OAUTH_CREDENTIAL_SWEEP_INTERVAL", "3600"))

# Upper bound for every call to a provider's token or identity endpoint
HTTP_TIMEOUT = float(os.environ.get("OAUTH_HTTP_TIMEOUT", "10"))

# Per-IP limit for GET /auth/{provider}; 0 disables
RATE_LIMIT_INITIATE_PER_MINUTE = int(os.environ.get("OAUTH_RATE_LIMIT_INITIATE_PER_MINUTE", "30"))

CORS_ORIGINS = [
    o.strip()
    for o in os.environ.get(
        "CORS_ORIGINS",
        f"{FRONTEND_URL},http://localhost:8080,http://localhost:5173,http://localhost:8081",
    ).split(",")
    if o.strip()
]

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

TWITTER_AUTHORIZE_URL = "https://twitter.com/i/oauth2/authorize"
TWITTER_TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
TWITTER_USERINFO_URL = "https://api.twitter.com/2/users/me"
# Identity (users.read, tweet.read), posting (tweet.write), refresh tokens (offline.access)
TWITTER_SCOPES = ("tweet.read", "tweet.write", "users.read", "offline.access")

LINKEDIN_AUTHORIZE_URL = "https://www.linkedin.com/oauth/v2/authorization"
LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
LINKEDIN_USERINFO_URL = "https://api.linkedin.com/v2/userinfo"
LINKEDIN_SCOPES = ("openid", "profile", "email")


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    client_id: str
    client_secret: str
    authorize_url: str
    token_url: str
    userinfo_url: str
    scopes: tuple[str, ...]
    redirect_uri: str

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id) and bool(self.client_secret)

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)


def _env(name: str) -> str:
    return os.environ.get(name, "").strip()


def load_provider_configs(frontend_url: str | None = None) -> dict[str, ProviderConfig]:
    """
    Read client credentials for every supported provider.
    Missing credentials are kept as empty strings; initiate fails for that provider only.
    """
    base = (frontend_url or FRONTEND_URL).rstrip("/")
    return {
        "twitter": ProviderConfig(
            name="twitter",
            client_id=_env("TWITTER_CLIENT_ID"),
            client_secret=_env("TWITTER_CLIENT_SECRET"),
            authorize_url=TWITTER_AUTHORIZE_URL,
            token_url=TWITTER_TOKEN_URL,
            userinfo_url=TWITTER_USERINFO_URL,
            scopes=TWITTER_SCOPES,
            redirect_uri=_env("TWITTER_REDIRECT_URI") or f"{base}/auth/twitter/callback",
        ),
        "linkedin": ProviderConfig(
            name="linkedin",
            client_id=_env("LINKEDIN_CLIENT_ID"),
            client_secret=_env("LINKEDIN_CLIENT_SECRET"),
            authorize_url=LINKEDIN_AUTHORIZE_URL,
            token_url=LINKEDIN_TOKEN_URL,
            userinfo_url=LINKEDIN_USERINFO_URL,
            scopes=LINKEDIN_SCOPES,
            redirect_uri=_env("LINKEDIN_REDIRECT_URI") or f"{base}/auth/linkedin/callback",
        ),
    }
