# backend/core/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional, List
import json


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # ignore unknown keys instead of crashing
    )

    # ---- Auth / JWT
    secret_key: str = Field("dev-secret-change-me", alias="JWT_SECRET")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # ---- DB
    # user-facing store and the elevated "service role" store used by the webhook gateway
    database_url: str = Field("sqlite:///./interview_credits.sqlite", alias="DATABASE_URL")
    service_database_url: Optional[str] = Field(default=None, alias="SERVICE_DATABASE_URL")

    # ---- Voice-call provider
    provider_api_key: Optional[str] = Field(default=None, alias="PROVIDER_API_KEY")
    provider_agent_id: Optional[str] = Field(default=None, alias="PROVIDER_AGENT_ID")
    provider_base_url: str = Field("https://api.retellai.com", alias="PROVIDER_BASE_URL")
    provider_timeout_seconds: float = Field(15.0, alias="PROVIDER_TIMEOUT_SECONDS")
    provider_webhook_secret: Optional[str] = Field(default=None, alias="PROVIDER_WEBHOOK_SECRET")
    provider_signature_header: str = Field("x-retell-signature", alias="PROVIDER_SIGNATURE_HEADER")

    # ---- Evaluation
    ai_provider: str = Field("stub", alias="AI_PROVIDER")  # "stub" | "ollama" | "openai"
    ollama_url: str = Field("http://127.0.0.1:11434", alias="OLLAMA_URL")
    ollama_model: str = Field("llama3.1", alias="OLLAMA_MODEL")
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field("gpt-4o-mini", alias="OPENAI_MODEL")
    eval_timeout_seconds: float = Field(60.0, alias="EVAL_TIMEOUT_SECONDS")
    eval_max_retries: int = Field(3, alias="EVAL_MAX_RETRIES")
    eval_retry_backoff_seconds: float = Field(1.0, alias="EVAL_RETRY_BACKOFF_SECONDS")

    # "off" | "inline" | "queued"
    auto_evaluate: str = Field("off", alias="AUTO_EVALUATE")

    # ---- CORS raw (we'll parse)
    cors_origins_raw: str = Field(
        "http://localhost:3000,http://127.0.0.1:3000",
        alias="CORS_ORIGINS",
    )

    # ---- Redis / Celery
    redis_url: Optional[str] = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")
    celery_broker_url: Optional[str] = Field(None, alias="CELERY_BROKER_URL")
    celery_result_backend: Optional[str] = Field(None, alias="CELERY_RESULT_BACKEND")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # ---- Helpers / parsed properties
    @property
    def cors_origins(self) -> List[str]:
        s = (self.cors_origins_raw or "").strip()
        if not s:
            return ["http://localhost:3000", "http://127.0.0.1:3000"]
        if s.startswith("["):
            try:
                arr = json.loads(s)
                if isinstance(arr, list):
                    return [str(x).strip() for x in arr if str(x).strip()]
            except ValueError:
                pass
        return [x.strip() for x in s.split(",") if x.strip()]

    @property
    def service_database_url_effective(self) -> str:
        return self.service_database_url or self.database_url

    @property
    def webhook_verification_enabled(self) -> bool:
        return bool(self.provider_webhook_secret)

    @property
    def auto_evaluate_mode(self) -> str:
        mode = (self.auto_evaluate or "off").strip().lower()
        return mode if mode in ("off", "inline", "queued") else "off"


settings = Settings()
