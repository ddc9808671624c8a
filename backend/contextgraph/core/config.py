from typing import List, Union
from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator

KNOWN_TELEMETRY_BACKENDS = {"none", "logging", "memory"}


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json | text

    # Telemetry - comma separated when read from the environment
    TELEMETRY_BACKENDS: Union[List[str], str] = ["logging"]
    TELEMETRY_LOGGER_NAME: str = "contextgraph.telemetry"
    TELEMETRY_BUFFER_SIZE: int = 1000

    # Context index pushed to agents on session resume
    CONTEXT_INDEX_MAX_TOKENS: int = 200

    @field_validator("TELEMETRY_BACKENDS", mode="before")
    @classmethod
    def parse_telemetry_backends(cls, v):
        if isinstance(v, str):
            v = [name.strip() for name in v.split(",") if name.strip()]
        names = [str(name).lower() for name in v]
        unknown = sorted(set(names) - KNOWN_TELEMETRY_BACKENDS)
        if unknown:
            raise ValueError(f"Unknown telemetry backend(s): {', '.join(unknown)}")
        return names

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        value = v.lower()
        if value not in {"json", "text"}:
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return value

    @model_validator(mode="after")
    def enforce_consistent_configuration(self) -> "Settings":
        backends = list(self.TELEMETRY_BACKENDS)
        if "none" in backends and len(backends) > 1:
            raise ValueError("TELEMETRY_BACKENDS cannot combine 'none' with other backends")

        if self.CONTEXT_INDEX_MAX_TOKENS <= 0:
            raise ValueError("CONTEXT_INDEX_MAX_TOKENS must be positive")

        if self.TELEMETRY_BUFFER_SIZE <= 0:
            raise ValueError("TELEMETRY_BUFFER_SIZE must be positive")

        return self

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }

settings = Settings()
