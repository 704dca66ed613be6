"""
PKCE (RFC 7636) and state helpers for flow initiation.
S256 only. State and verifier are always generated independently.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode


def generate_token() -> str:
    """Opaque URL-safe value (256 bits, no padding). Used for state tokens and verifiers."""
    return secrets.token_urlsafe(32)


def derive_challenge(verifier: str) -> str:
    """S256 code_challenge: base64url(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce() -> tuple[str, str]:
    """
    Generate code_verifier and code_challenge (S256).
    Returns (code_verifier, code_challenge). Verifier is 43 chars (256 bits entropy).
    """
    code_verifier = generate_token()
    return code_verifier, derive_challenge(code_verifier)
