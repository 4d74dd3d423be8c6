from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    refresh_token_expire_days: int = Field(7, alias="REFRESH_TOKEN_EXPIRE_DAYS")

    # Upper bound for the account lookup made while registering (recovery path included)
    profile_lookup_timeout_seconds: float = Field(8.0, alias="PROFILE_LOOKUP_TIMEOUT_SECONDS")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    create_tables_on_startup: bool = Field(False, alias="CREATE_TABLES_ON_STARTUP")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
