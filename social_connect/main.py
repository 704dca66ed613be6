"""
Social Connect API. Links Twitter/X and LinkedIn accounts through OAuth 2.0 authorization code flows.
GET /auth/{provider}, /auth/{provider}/callback, /auth/{provider}/test; /connections; /audit.

Deployment assumption: /connections and /audit carry no authentication of their own. They are keyed
by provider user ids, which are public for Twitter, so anyone who can reach them can read status,
force a refresh or disconnect any account. Expose them only behind an authenticating gateway or on a
private network; only /auth/{provider} and its callback are meant for browsers.
"""
import logging
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from social_connect.audit import AuditLog
from social_connect.config import (
    CORS_ORIGINS,
    CREDENTIAL_RETENTION,
    CREDENTIAL_SWEEP_INTERVAL,
    CREDENTIALS_PATH,
    FRONTEND_URL,
    HTTP_TIMEOUT,
    LOG_LEVEL,
    PENDING_FLOW_TTL,
    PENDING_SWEEP_INTERVAL,
    RATE_LIMIT_INITIATE_PER_MINUTE,
    ProviderConfig,
    load_provider_configs,
)
from social_connect.errors import (
    AuthorizationDenied,
    ConfigurationError,
    NetworkError,
    NotConnected,
    SocialConnectError,
    UnknownProvider,
    UpstreamAuthError,
)
from social_connect.orchestrator import FlowOrchestrator
from social_connect.providers.registry import build_adapters
from social_connect.rate_limit import SlidingWindowLimiter
from social_connect.store import CredentialStore, PlatformCredential, Provider, utcnow
from social_connect.sweeper import ExpirySweeper

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a single format for the API and the sweeper."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


@dataclass
class Services:
    store: CredentialStore
    orchestrator: FlowOrchestrator
    sweeper: ExpirySweeper
    limiter: SlidingWindowLimiter


def build_services(configs: dict[str, ProviderConfig] | None = None) -> Services:
    """Create the process-wide store and everything that shares it. Called once at import."""
    configs = configs or load_provider_configs()
    store = CredentialStore(pending_ttl=PENDING_FLOW_TTL, credential_retention=CREDENTIAL_RETENTION)
    orchestrator = FlowOrchestrator(store, build_adapters(configs, timeout=HTTP_TIMEOUT), AuditLog())
    for cfg in configs.values():
        if not cfg.is_configured:
            logger.warning("%s client credentials not set; its flows will fail until configured", cfg.name)
    return Services(
        store=store,
        orchestrator=orchestrator,
        sweeper=ExpirySweeper(store, PENDING_SWEEP_INTERVAL, CREDENTIAL_SWEEP_INTERVAL),
        limiter=SlidingWindowLimiter(RATE_LIMIT_INITIATE_PER_MINUTE),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expiry sweeper on startup; stop it on shutdown."""
    configure_logging(LOG_LEVEL)
    sweeper = app.state.services.sweeper
    sweeper.start()
    try:
        yield
    finally:
        await sweeper.stop()


app = FastAPI(title="Social Connect", version="0.1.0", lifespan=lifespan)
app.state.services = build_services()
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)


def get_orchestrator(request: Request) -> FlowOrchestrator:
    return request.app.state.services.orchestrator


def get_limiter(request: Request) -> SlidingWindowLimiter:
    return request.app.state.services.limiter


def get_client_ip(request: Request) -> str:
    """Client IP if available (request.client.host). Forwarding headers are not trusted."""
    if request.client is None:
        return "unknown"
    return request.client.host or "unknown"


def _frontend_redirect(params: dict) -> RedirectResponse:
    return RedirectResponse(url=f"{FRONTEND_URL}{CREDENTIALS_PATH}?{urlencode(params)}", status_code=302)


def _credential_fields(credential: PlatformCredential) -> dict:
    """Provider-prefixed fields the frontend's credential page reads."""
    p = credential.provider.value
    fields = {
        f"{p}_access_token": credential.access_token,
        f"{p}_expires_at": credential.expires_at.isoformat(),
    }
    if credential.refresh_token:
        fields[f"{p}_refresh_token"] = credential.refresh_token
    fields[f"{p}_username"] = credential.display_name
    fields[f"{p}_user_id"] = credential.external_user_id
    if credential.email:
        fields[f"{p}_email"] = credential.email
    return fields


def _wants_json(request: Request) -> bool:
    """Popup flows fetch the callback from JavaScript; top-level navigations get a redirect."""
    if request.query_params.get("response_mode") == "json":
        return True
    accept = request.headers.get("accept", "").lower()
    return "application/json" in accept and "text/html" not in accept


def _error_status(exc: SocialConnectError) -> int:
    if isinstance(exc, ConfigurationError):
        return 500
    if isinstance(exc, UnknownProvider | NotConnected):
        return 404
    if isinstance(exc, UpstreamAuthError):
        return 429 if exc.rate_limited else 502
    if isinstance(exc, NetworkError):
        return 502
    return 400


def _error_response(exc: SocialConnectError) -> JSONResponse:
    headers = {}
    if isinstance(exc, UpstreamAuthError) and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=_error_status(exc), content={"error": exc.public_message}, headers=headers)


def _log_callback_failure(provider: str, exc: SocialConnectError) -> None:
    if exc.security_relevant:
        logger.warning("Rejected %s callback (possible CSRF or replay): %s", provider, exc)
    elif isinstance(exc, AuthorizationDenied):
        logger.info("%s authorization declined: %s", provider, exc)
    else:
        logger.error("%s callback failed: %s", provider, exc)


@app.exception_handler(UnknownProvider)
async def unknown_provider_handler(request: Request, exc: UnknownProvider):
    return JSONResponse(status_code=404, content={"error": exc.public_message})


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "social_connect"}


@app.get("/auth/{provider}")
def start_auth(
    provider: str,
    request: Request,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
    limiter: SlidingWindowLimiter = Depends(get_limiter),
):
    """Issue a state token and return the provider's authorization URL for the frontend to open."""
    p = Provider.parse(provider)
    allowed, retry_after = limiter.check_and_consume(get_client_ip(request))
    if not allowed:
        return JSONResponse(
            status_code=429,
            content={"error": "Too many requests", "details": "Please wait before connecting again"},
            headers={"Retry-After": str(retry_after)},
        )
    try:
        auth = orchestrator.initiate(p)
    except ConfigurationError as e:
        logger.error("Cannot initiate %s OAuth: %s", p.value, e)
        return JSONResponse(
            status_code=500,
            content={"error": f"Failed to initiate {p.value} OAuth", "details": e.public_message},
        )
    return {"url": auth.url}


@app.get("/auth/{provider}/callback")
def auth_callback(
    provider: str,
    request: Request,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
):
    """
    Provider redirect target. Validates and consumes state, exchanges the code, stores the credential,
    then redirects to the frontend credential page (or answers JSON for popup flows).
    """
    wants_json = _wants_json(request)
    try:
        p = Provider.parse(provider)
        credential = orchestrator.complete_callback(p, request.query_params)
    except SocialConnectError as e:
        _log_callback_failure(provider, e)
        if wants_json:
            return _error_response(e)
        return _frontend_redirect({"error": e.public_message})
    except Exception:
        logger.exception("Unexpected error in %s callback", provider)
        if wants_json:
            return JSONResponse(status_code=500, content={"error": "Server error"})
        return _frontend_redirect({"error": "Server error"})

    logger.info("%s credentials saved for user %s", p.value, credential.external_user_id)
    fields = _credential_fields(credential)
    if wants_json:
        return fields
    return _frontend_redirect(fields)


@app.get("/auth/{provider}/test")
def auth_config_check(provider: str, orchestrator: FlowOrchestrator = Depends(get_orchestrator)):
    """Report whether the provider is configured and which callback URL it uses. Never returns secrets."""
    cfg = orchestrator.adapter_for(provider).config
    return {
        "provider": cfg.name,
        "credentials": {
            "client_id_present": bool(cfg.client_id),
            "client_secret_present": bool(cfg.client_secret),
            "client_id_prefix": f"{cfg.client_id[:4]}..." if cfg.client_id else None,
        },
        "callback_url": cfg.redirect_uri,
        "scopes": list(cfg.scopes),
        "configured": cfg.is_configured,
    }


@app.get("/connections/{provider}/{user_id}")
def connection_status(provider: str, user_id: str, orchestrator: FlowOrchestrator = Depends(get_orchestrator)):
    credential = orchestrator.get_credential(provider, user_id)
    if credential is None:
        return JSONResponse(status_code=404, content={"error": "Not connected", "connected": False})
    return credential.status(utcnow())


@app.post("/connections/{provider}/{user_id}/refresh")
def refresh_connection(provider: str, user_id: str, orchestrator: FlowOrchestrator = Depends(get_orchestrator)):
    """Use the stored refresh token to renew the access token."""
    try:
        credential = orchestrator.refresh_credential(provider, user_id)
    except SocialConnectError as e:
        logger.error("Refresh of %s credential %s failed: %s", provider, user_id, e)
        return _error_response(e)
    return credential.status(utcnow())


@app.delete("/connections/{provider}/{user_id}")
def disconnect(provider: str, user_id: str, orchestrator: FlowOrchestrator = Depends(get_orchestrator)):
    return {"disconnected": orchestrator.disconnect(provider, user_id)}


@app.get("/audit")
def list_audit_events(
    limit: int = 100,
    event_type: str | None = None,
    outcome: str | None = None,
    provider: str | None = None,
    orchestrator: FlowOrchestrator = Depends(get_orchestrator),
):
    """Recent connection events, most recent first. No tokens or secrets."""
    return orchestrator.audit.query(limit=limit, event_type=event_type, outcome=outcome, provider=provider)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "social_connect.main:app",
        host="127.0.0.1",
        port=3001,
        reload=True,
    )
