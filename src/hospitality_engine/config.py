"""Application settings using Pydantic Settings"""
from typing import List
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str

    APP_ENV: str = "dev"

    ADMIN_API_TOKEN: str = "change-me-in-production"

    SCHEDULER_ENABLED: bool = True
    ACTION_SWEEP_INTERVAL_MINUTES: int = 5

    RULES_CACHE_TTL_SECONDS: int = 60
    PENDING_ACTION_MAX_AGE_MINUTES: int = 30
    MIN_RULES_PER_CATEGORY: int = 10

    MAX_POPUPS_PER_DAY: int = 5
    GLOBAL_COOLDOWN_SECONDS: int = 3600
    DISMISSALS_BEFORE_GLOBAL_COOLDOWN: int = 3

    NAMED_LOCK_BACKEND: str = "auto"

    FUNNEL_INTERESTED_THRESHOLD: int = 20
    FUNNEL_ENGAGED_THRESHOLD: int = 40
    FUNNEL_SUBSCRIBER_THRESHOLD: int = 60
    FUNNEL_ADVOCATE_THRESHOLD: int = 80

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        allowed = ["dev", "staging", "prod", "test"]
        if v not in allowed:
            raise ValueError(f"APP_ENV must be one of: {allowed}")
        return v

    @field_validator("NAMED_LOCK_BACKEND")
    @classmethod
    def validate_lock_backend(cls, v: str) -> str:
        allowed = ["auto", "advisory", "local"]
        if v not in allowed:
            raise ValueError(f"NAMED_LOCK_BACKEND must be one of: {allowed}")
        return v

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "prod"

    @property
    def funnel_thresholds(self) -> List[int]:
        return [
            self.FUNNEL_INTERESTED_THRESHOLD,
            self.FUNNEL_ENGAGED_THRESHOLD,
            self.FUNNEL_SUBSCRIBER_THRESHOLD,
            self.FUNNEL_ADVOCATE_THRESHOLD,
        ]

    def validate_secrets_for_production(self) -> None:
        if self.is_production:
            errors = []
            if self.ADMIN_API_TOKEN == "change-me-in-production":
                errors.append("ADMIN_API_TOKEN must be set to a secure value in production")
            if errors:
                raise ValueError("; ".join(errors))

    def validate_funnel_thresholds(self) -> None:
        thresholds = self.funnel_thresholds
        if thresholds != sorted(thresholds) or len(set(thresholds)) != len(thresholds):
            raise ValueError("Funnel thresholds must be strictly increasing: interested < engaged < subscriber < advocate")
        if thresholds[0] <= 0 or thresholds[-1] > 100:
            raise ValueError("Funnel thresholds must lie within (0, 100]")

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def get_settings() -> Settings:
    return settings
