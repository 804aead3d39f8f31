"""Configuration schema using Pydantic."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DiscoveryConfig(Base):
    """Bridge discovery settings."""

    # Cloud endpoint: callers must keep to 1 request per 15 minutes
    endpoint_url: str = "https://discovery.meethue.com"
    endpoint_timeout: float = 10.0
    mdns_service: str = "_hue._tcp.local."
    mdns_timeout: float = 1.5  # Total wait for the first mDNS answer before giving up
    mdns_query_interval: float = 0.15  # Seconds between multicast queries
    default_port: int = 443


class SessionConfig(Base):
    """HTTPS session settings for talking to a bridge."""

    timeout: float = 10.0
    verify_tls: bool = False  # Bridges present self-signed certificates
    ca_bundle: str = ""  # PEM with the bridge root CA; enables verification when set


class AuthConfig(Base):
    """Batch authentication settings."""

    concurrent: bool = False
    max_concurrency: int = 8


class ProvisioningConfig(Base):
    """Application key issuance settings."""

    app_name: str = "huelink"
    instance_name: str = "default"


class Config(BaseSettings):
    """Root configuration for huelink."""

    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    provisioning: ProvisioningConfig = Field(default_factory=ProvisioningConfig)

    model_config = ConfigDict(env_prefix="HUELINK_", env_nested_delimiter="__")
