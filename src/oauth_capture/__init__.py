"""OAuth Capture - local redirect target for OAuth2 implicit grant.

Example:
    from oauth_capture import start_capture_session

    session = start_capture_session()
    token = await session.result
"""

from oauth_capture.config import REGISTERED_REDIRECTS, CaptureConfig, ClientRegistration
from oauth_capture.exceptions import (
    AuthCancelledError,
    BindExhaustedError,
    CaptureTimeoutError,
    ConfigurationError,
    InactiveAccountError,
    ListenerError,
    MissingTokenError,
    OAuthCaptureError,
    ProviderError,
    SecretMismatchError,
)
from oauth_capture.flows.implicit_grant import (
    CaptureSession,
    capture_access_token,
    start_capture_session,
)
from oauth_capture.providers.base import AuthToken
from oauth_capture.providers.digitalocean_provider import DigitalOceanProvider

__version__ = "1.0.0"

__all__ = [
    # Core
    "CaptureConfig",
    "CaptureSession",
    "ClientRegistration",
    "REGISTERED_REDIRECTS",
    "start_capture_session",
    "capture_access_token",
    # Providers
    "AuthToken",
    "DigitalOceanProvider",
    # Exceptions
    "OAuthCaptureError",
    "ConfigurationError",
    "ListenerError",
    "BindExhaustedError",
    "SecretMismatchError",
    "ProviderError",
    "MissingTokenError",
    "AuthCancelledError",
    "CaptureTimeoutError",
    "InactiveAccountError",
]
