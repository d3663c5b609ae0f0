"""Capture flow configuration.

Registered (client_id, port) pairs and the session settings built on them.
"""

from dataclasses import dataclass, field

from oauth_capture.exceptions import ConfigurationError


@dataclass(frozen=True)
class ClientRegistration:
    """Provider-issued client id bound to one local redirect port."""

    client_id: str
    port: int


# Tried in this order. The provider only accepts each client id with its own
# redirect port, so a new pair only needs a new row here.
REGISTERED_REDIRECTS: tuple[ClientRegistration, ...] = (
    ClientRegistration(
        "7f84935771d49c2331e1cfb60c7827e20eaf128103435d82ad20b3c53253b721", 55189
    ),
    ClientRegistration(
        "4af51205e8d0d8f4a5b84a6b5ca9ea7124f914a5621b6a731ce433c2c7db533b", 60434
    ),
    ClientRegistration(
        "706928a1c91cbd646c4e0d744c8cbdfbf555a944b821ac7812a7314a4649683a", 61437
    ),
)


@dataclass
class CaptureConfig:
    """Settings for one implicit-grant capture session.

    Attributes:
        authorization_endpoint: Provider authorize URL
        scope: Fixed scope string sent to the provider
        registrations: Ordered candidate registrations
        redirect_host: Host name used in redirect_uri and the state target
        provider: Provider name attached to raised errors
        timeout: Seconds to wait for the browser callback (None waits forever)
        poll_interval: Seconds between listener shutdown checks
        secret_length: Number of hex characters in the session secret
    """

    authorization_endpoint: str = "https://cloud.digitalocean.com/v1/oauth/authorize"
    scope: str = "read write"
    registrations: tuple[ClientRegistration, ...] = field(
        default_factory=lambda: REGISTERED_REDIRECTS
    )
    redirect_host: str = "localhost"
    provider: str = "digitalocean"
    timeout: float | None = 300
    poll_interval: float = 0.2
    secret_length: int = 32

    def __post_init__(self):
        self.registrations = tuple(self.registrations)
        seen: set[int] = set()
        for registration in self.registrations:
            if registration.port in seen:
                raise ConfigurationError(
                    f"Port {registration.port} is registered more than once",
                    provider=self.provider,
                )
            seen.add(registration.port)

    @property
    def candidate_ports(self) -> list[int]:
        """Ports in priority order."""
        return [registration.port for registration in self.registrations]
