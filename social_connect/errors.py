"""
Error taxonomy for the connection flow.
`public_message` is what reaches the browser; `str(exc)` carries the detail for server logs.
"""

_DISPLAY_NAMES = {"twitter": "Twitter", "linkedin": "LinkedIn"}


def display_name(provider: str) -> str:
    return _DISPLAY_NAMES.get(provider, provider.capitalize())


class SocialConnectError(Exception):
    public_message = "Connection failed. Please try again."
    security_relevant = False


class ConfigurationError(SocialConnectError):
    """Provider client credentials are missing or invalid."""

    def __init__(self, provider: str, message: str | None = None):
        self.provider = provider
        super().__init__(message or f"{provider} OAuth client credentials are not configured")

    @property
    def public_message(self) -> str:
        return f"{display_name(self.provider)} is not configured on this server."


class UnknownProvider(SocialConnectError):
    public_message = "Unsupported provider."

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"unknown provider: {value!r}")


class InvalidOrExpiredState(SocialConnectError):
    """State token absent, already consumed, expired, or issued for another provider."""

    public_message = "Invalid or expired state. Please try connecting again."
    security_relevant = True


class AuthorizationDenied(SocialConnectError):
    """The user or the provider declined the authorization request."""

    def __init__(self, error: str, description: str | None = None):
        self.error = error
        self.description = description
        super().__init__(f"{error}: {description or 'Unknown error'}")

    @property
    def public_message(self) -> str:
        return f"{self.error}: {self.description or 'Unknown error'}"


class MalformedCallback(SocialConnectError):
    public_message = "Missing required parameters."


class NotConnected(SocialConnectError):
    public_message = "Account is not connected. Please connect it again."


class UpstreamAuthError(SocialConnectError):
    """
    Provider token or identity endpoint returned a non-success status (or an unusable body).
    `body` is the raw provider response, for logs only.
    """

    def __init__(
        self,
        provider: str,
        stage: str,
        status_code: int | None,
        body: str = "",
        retry_after: int | None = None,
    ):
        self.provider = provider
        self.stage = stage
        self.status_code = status_code
        self.body = body
        self.retry_after = retry_after
        super().__init__(f"{provider} {stage} failed: status={status_code} body={body[:500]!r}")

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def public_message(self) -> str:
        if self.rate_limited:
            return f"{display_name(self.provider)} is rate limiting requests. Please try again in a few minutes."
        return f"Failed to complete {display_name(self.provider)} authentication."


class NetworkError(SocialConnectError):
    """Transport-level failure reaching the provider (DNS, connect, timeout)."""

    def __init__(self, provider: str, stage: str, cause: Exception | None = None):
        self.provider = provider
        self.stage = stage
        super().__init__(f"{provider} {stage} unreachable: {cause!r}")

    @property
    def public_message(self) -> str:
        return f"Could not reach {display_name(self.provider)}. Please try again."
