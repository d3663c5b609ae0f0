"""Auth Providers

캡처 플로우 위에서 동작하는 Provider 구현.
"""

from oauth_capture.providers.base import AuthToken, BaseProvider
from oauth_capture.providers.digitalocean_provider import DigitalOceanProvider

__all__ = [
    "AuthToken",
    "BaseProvider",
    "DigitalOceanProvider",
]
