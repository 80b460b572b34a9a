import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Bus Tracker credential and endpoint
    api_key: str = Field(default="", alias="BUS_TRACKER_API_KEY")
    base_url: str = Field(
        default="https://www.ctabustracker.com/bustime/api/v3",
        alias="BUS_TRACKER_BASE_URL",
    )

    # Auto-injected query parameters
    feed: str = Field(default="ctabus", alias="BUS_TRACKER_FEED")
    output_format: str = Field(default="json", alias="BUS_TRACKER_FORMAT")

    # Request behaviour
    timeout: float = Field(default=7.0, alias="BUS_TRACKER_TIMEOUT")
    max_retries: int = Field(default=2, alias="BUS_TRACKER_MAX_RETRIES")
    retry_backoff: float = Field(default=0.0, alias="BUS_TRACKER_RETRY_BACKOFF")

    # Upstream timestamps carry no offset
    source_timezone: str = Field(
        default="America/Chicago", alias="BUS_TRACKER_SOURCE_TZ"
    )

    debug: bool = Field(default=False, alias="BUS_TRACKER_DEBUG")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the current process environment."""
        known = {field.alias for field in cls.model_fields.values()}
        return cls.model_validate(
            {name: value for name, value in os.environ.items() if name in known}
        )


global_settings = Settings.from_env()
