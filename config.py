"""Application configuration."""
import enum
from typing import Optional, Tuple

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DelayProfile(str, enum.Enum):
    """Named request delay presets."""
    FULL = "full"
    LIGHT = "light"


class Settings(BaseSettings):
    """Application settings."""

    # Site
    base_url: str = "https://www.fanfiction.net"
    category: str = "anime/RWBY"
    user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

    # Output
    out_dir: str = "./output"
    dump_dir: Optional[str] = None
    export_dir: str = "./export"

    # Throttling (seconds)
    min_delay: float = 2.5
    max_delay: float = 5.0
    light_min_delay: float = 0.5
    light_max_delay: float = 0.75
    request_timeout: float = 60.0

    # Retries
    max_attempts: int = 3
    failure_ceiling: int = 10

    # Environment
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    @model_validator(mode="after")
    def check_delays(self):
        if self.min_delay > self.max_delay:
            raise ValueError("min_delay must not be larger than max_delay.")
        if self.light_min_delay > self.light_max_delay:
            raise ValueError("light_min_delay must not be larger than light_max_delay.")
        return self

    def delays(self, profile: DelayProfile) -> Tuple[float, float]:
        """Return the (min, max) delay pair for a profile."""
        if profile == DelayProfile.LIGHT:
            return self.light_min_delay, self.light_max_delay
        return self.min_delay, self.max_delay
