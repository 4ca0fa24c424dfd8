from typing import List, Union
from pydantic import validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Local proxy that fronts every provider
    PROXY_BASE_URL: str = "http://localhost:3001"
    PROVIDER_REQUEST_TIMEOUT: int = 60
    PROVIDER_USER_AGENT: str = "GenOrch/1.0"

    # Provider credentials
    KIE_API_KEY: str = ""
    YUNWU_API_KEY: str = ""
    DAYUAPI_API_KEY: str = ""
    SUTU_API_KEY: str = ""
    YIJIAPI_API_KEY: str = ""
    DEFAULT_PROVIDER: str = "yunwu"
    ENABLED_PROVIDERS: List[str] = ["kie", "yunwu", "dayuapi", "sutu", "yijiapi"]

    @validator("ENABLED_PROVIDERS", pre=True)
    def assemble_enabled_providers(cls, v: Union[str, List[str]]) -> List[str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    # Polling
    POLL_INTERVAL: float = 5.0  # seconds
    POLL_BACKOFF_FACTOR: float = 1.0  # 1.0 = fixed interval
    POLL_MAX_INTERVAL: float = 30.0

    # Task groups
    TASK_GROUP_CONCURRENCY: int = 3

    @validator("TASK_GROUP_CONCURRENCY")
    def check_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("TASK_GROUP_CONCURRENCY must be at least 1")
        return v

    # Model health
    HEALTH_FAILURE_THRESHOLD: int = 3
    CONTENT_POLICY_AFFECTS_HEALTH: bool = False

    # Submission retry (caller side, adapters never retry)
    SUBMIT_MAX_ATTEMPTS: int = 1
    SUBMIT_RETRY_MIN_WAIT: float = 1.0
    SUBMIT_RETRY_MAX_WAIT: float = 10.0

    # State persistence
    STATE_CACHE_DIR: str = "/tmp/genorch_state"
    STATE_CACHE_SIZE_LIMIT: int = 10000000  # 10MB

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
