from functools import lru_cache
from typing import Annotated

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="forbid",
        validate_by_name=True,
        populate_by_name=True,
    )
    database_url: str = ""
    auto_create_schema: bool = False

    auth_jwt_secret: str = ""
    auth_jwt_audience: str = ""

    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False

    enable_notification_outbox: bool = False
    notification_outbox_channel: str = "email"
    pii_redaction_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("PII_REDACTION_ENABLED"),
    )

    max_photos_per_request: int = Field(default=3, ge=0)
    description_max_length: int = Field(default=1000, ge=1)

    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=list)
    cors_allow_methods: Annotated[list[str], NoDecode] = Field(default_factory=lambda: [
        "GET",
        "POST",
        "OPTIONS",
    ])
    cors_allow_headers: Annotated[list[str], NoDecode] = Field(default_factory=lambda: [
        "Authorization",
        "Content-Type",
        "Accept",
    ])

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            if value.strip() == "":
                return []
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def is_sqlite(self) -> bool:
        return (self.database_url or "").startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    return Settings()
