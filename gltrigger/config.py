from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Hosting service
    gitlab_url: str = "https://gitlab.com"

    # HTTP client (per request, independent of the pipeline wait timeout)
    httpx_timeout: int = 10

    # Gateway retries for transport errors and 5xx responses (0 = no retry)
    gateway_retries: int = 0
    retry_backoff_seconds: float = 1.0

    # Poller settings
    poll_interval_seconds: float = 2.0
    wait_timeout_seconds: int = 1800  # 30 minutes

    model_config = {"env_prefix": "GLTRIGGER_"}


settings = Settings()


class ConfigError(ValueError):
    """A required run input is missing or invalid."""


@dataclass(frozen=True)
class RunConfig:
    project_id: int
    user_token: str
    ref: str = "master"
    pipeline_token: str | None = None
    variables: Mapping[str, str] = field(default_factory=dict)
    gitlab_url: str = settings.gitlab_url
    timeout: float | None = settings.wait_timeout_seconds

    def __post_init__(self):
        # Freeze a private copy so callers can't mutate variables mid-run
        object.__setattr__(
            self, "variables", MappingProxyType(dict(self.variables))
        )

    @property
    def trigger_token(self) -> str:
        return self.pipeline_token or self.user_token

    def validate(self) -> None:
        if not self.project_id or self.project_id <= 0:
            raise ConfigError("Project ID is empty")
        if not self.user_token:
            raise ConfigError("User token is empty")
        if not self.ref:
            raise ConfigError("Ref is empty")
