from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    database_url: str
    sql_echo: bool = False

    # Security
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24  # 24 hours

    # Redis (optional, used for the response cache and websocket fan-out)
    redis_url: str = ""  # local: redis://localhost:6379/0
    cache_key_prefix: str = "vmapp:"
    cache_timeout_seconds: float = 0.5  # upper bound for a single cache call
    cache_retry_seconds: float = 30.0  # back-off after the cache fails

    # Uploads
    upload_dir: str = "uploads"
    max_voice_size_mb: int = 10
    max_image_size_mb: int = 5

    # Push notifications (FCM HTTP endpoint, optional)
    fcm_endpoint: str = "https://fcm.googleapis.com/fcm/send"
    fcm_server_key: str = ""
    fcm_timeout_seconds: float = 10.0

    # Orphaned upload sweeper
    orphan_sweep_enabled: bool = True
    orphan_sweep_interval_hours: int = 6
    orphan_grace_minutes: int = 60  # files younger than this are never swept

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:8080",
    ]

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
