# app/core/config.py
from typing import List, Union, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


# mirrors PriorityEnum values
PRIORITIES = ("Low", "Medium", "High")


def _split_list(v):
    if isinstance(v, str):
        s = v.strip()
        if s.startswith("[") and s.endswith("]"):
            try:
                import json
                parsed = json.loads(s)
                return [str(i).strip() for i in parsed if str(i).strip()]
            except ValueError:
                pass
        return [i.strip() for i in s.split(",") if i.strip()]
    return v


class Settings(BaseSettings):
    # ==== Infrastructure ====
    database_url: str = "postgresql+asyncpg://app:app@db:5432/helpdesk"
    db_pool_size: int = 10
    db_max_overflow: int = 0
    redis_url: str = "redis://redis:6379/0"

    # ==== Security / Auth ====
    jwt_secret: str = "changeme"
    jwt_alg: str = "HS256"

    # session lifetime, minutes (2 days)
    jwt_expires_min: int = 60 * 24 * 2

    # only these roles may obtain a session; employees submit without logging in
    login_roles: Union[str, List[str]] = ["ADMIN", "TECHNICIAN"]

    # ==== CORS ====
    # CORS_ORIGINS=http://localhost:5173,http://127.0.0.1:5173,...
    cors_origins: Union[str, List[str]] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ]

    # ==== Notifications ====
    notifications_backend: str = "rq"   # rq|inline|disabled
    notifications_queue: str = "notifications"

    # system mail identity (fallback when the actor has no personal one)
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    smtp_timeout: int = 10
    mail_from: str = "helpdesk@example.com"

    # optional mirror of every notification event
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None

    # ==== Ticket defaults ====
    default_priority: str = "Medium"

    # ==== Logging / Environment ====
    env: str = "dev"          # dev|staging|prod
    log_level: str = "INFO"   # DEBUG|INFO|WARNING|ERROR

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        return _split_list(v)

    @field_validator("login_roles", mode="before")
    @classmethod
    def _parse_login_roles(cls, v):
        v = _split_list(v)
        return [str(i).upper() for i in v]

    @field_validator("default_priority", mode="before")
    @classmethod
    def _parse_default_priority(cls, v):
        v = str(v or "").strip().capitalize()
        if v not in PRIORITIES:
            raise ValueError(f"default_priority must be one of {', '.join(PRIORITIES)}")
        return v


settings = Settings()
