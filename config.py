"""Application configuration."""
import os
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


def _env_flag(name: str, default: bool = False) -> bool:
    """Read a boolean flag from the environment."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: T, cast: Callable[[str], T]) -> T:
    """Read a number from the environment, naming the variable when it is malformed."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return cast(value.strip())
    except ValueError as e:
        raise ValueError(f"{name} must be a number ({cast.__name__}), got {value!r}") from e


@dataclass
class DataverseApiConfig:
    """Dataverse Web API configuration."""

    service_uri: str = ""
    api_key: str = ""  # Bearer token, read from .env or user input
    api_version: str = "9.2"
    timeout: int = 60
    batch_size: int = 1000
    retry_count: int = 3
    retry_pause: float = 1.0
    cache_dir: Optional[str] = None  # Metadata file cache, off when unset

    @property
    def web_api_url(self) -> str:
        """Base URL of the Web API endpoint."""
        return f"{self.service_uri.rstrip('/')}/api/data/v{self.api_version}"

    @classmethod
    def from_env(cls) -> "DataverseApiConfig":
        """Load config from environment variables."""
        return cls(
            service_uri=os.getenv("CDS_SERVICE_URI", ""),
            api_key=os.getenv("CDS_API_KEY", ""),
            api_version=os.getenv("CDS_API_VERSION", "9.2"),
            timeout=_env_number("CDS_TIMEOUT", 60, int),
            batch_size=_env_number("CDS_BATCH_SIZE", 1000, int),
            retry_count=_env_number("CDS_RETRY_COUNT", 3, int),
            retry_pause=_env_number("CDS_RETRY_PAUSE", 1.0, float),
            cache_dir=os.getenv("CDS_CACHE_DIR") or None,
        )


@dataclass
class AppConfig:
    """Application configuration."""

    output_dir: str = "./output"
    geo: str = ""
    registry_file: Optional[str] = None
    allow_integration_hosts: bool = False
    dataverse_api: DataverseApiConfig = None

    def __post_init__(self):
        """Fill in default values."""
        if self.dataverse_api is None:
            self.dataverse_api = DataverseApiConfig.from_env()

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load config from environment variables."""
        return cls(
            output_dir=os.getenv("CDS_OUTPUT_DIR", "./output"),
            geo=os.getenv("CDS_GEO", ""),
            registry_file=os.getenv("CDS_DISCOVERY_REGISTRY") or None,
            allow_integration_hosts=_env_flag("CDS_ALLOW_INTEGRATION_HOSTS"),
            dataverse_api=DataverseApiConfig.from_env(),
        )


# Global instance
app_config = AppConfig.from_env()
