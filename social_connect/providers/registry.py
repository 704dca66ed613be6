from social_connect.config import HTTP_TIMEOUT, ProviderConfig
from social_connect.providers.base import ProviderAdapter
from social_connect.providers.linkedin import LinkedInAdapter
from social_connect.providers.twitter import TwitterAdapter
from social_connect.store import Provider

ADAPTER_CLASSES: dict[Provider, type[ProviderAdapter]] = {
    Provider.TWITTER: TwitterAdapter,
    Provider.LINKEDIN: LinkedInAdapter,
}


def build_adapters(configs: dict[str, ProviderConfig], timeout: float = HTTP_TIMEOUT) -> dict[Provider, ProviderAdapter]:
    """One adapter per supported provider, keyed by Provider."""
    return {p: cls(configs[p.value], timeout=timeout) for p, cls in ADAPTER_CLASSES.items()}
