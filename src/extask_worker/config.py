import socket
import uuid
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def default_worker_id() -> str:
    return f"{socket.gethostname()}{uuid.uuid4()}"


class ClientSettings(BaseSettings):
    base_url: str = "http://localhost:8080/engine-rest"
    worker_id: str = Field(default_factory=default_worker_id)
    max_tasks: int = 10
    use_priority: bool = True
    async_response_timeout: Optional[int] = None  # ms, enables long polling
    lock_duration: int = 20000  # ms
    request_timeout: float = 10.0  # seconds
    auth_user: Optional[str] = None
    auth_password: Optional[str] = None

    auto_fetching: bool = True
    disable_backoff: bool = False
    backoff_init_time: int = 500  # ms
    backoff_factor: int = 2
    backoff_max_time: int = 60000  # ms
    idle_interval: float = 1.0  # seconds to idle while nothing is subscribed

    model_config = SettingsConfigDict(
        env_prefix="EXTASK_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("max_tasks", "lock_duration", "backoff_init_time", "backoff_factor", "backoff_max_time")
    @classmethod
    def _positive(cls, value: int, info):
        if value <= 0:
            raise ValueError(f"{info.field_name} must be greater than zero")
        return value

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str):
        return value.rstrip("/")
