from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    relay_api_base: str = Field("https://api.relay.link", description="Relay API base URL")
    request_timeout: float = Field(10.0, description="Upstream request timeout in seconds")
    fast_poll_interval: float = Field(2.0, description="Seconds between the first polls")
    slow_poll_interval: float = Field(10.0, description="Seconds between polls after the fast phase")
    max_fast_polls: int = Field(30, description="Number of polls that use the fast interval")
    api_title: str = Field("Relay Re-indexer API")
    start_rate_limit: str = Field("10/minute")


settings = Settings()
