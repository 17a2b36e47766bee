from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "Avnu API"
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = "changeme"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 8
    REFRESH_TOKEN_EXPIRE_DAYS: int = 30
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "avnu_db"
    POSTGRES_PORT: int = 5432
    DATABASE_URL: str = ""

    # Hosted functions (venue assistant, text-to-speech, email)
    FUNCTIONS_BASE_URL: str = "http://localhost:54321/functions/v1"
    FUNCTIONS_API_KEY: str = ""
    FUNCTIONS_TIMEOUT_SECONDS: float = 20.0

    # Best-effort notification delivery
    NOTIFY_MAX_ATTEMPTS: int = 3
    NOTIFY_BACKOFF_SECONDS: int = 1

    DEFAULT_CURRENCY: str = "SAR"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    def assemble_db_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"


settings = Settings()
settings.DATABASE_URL = settings.assemble_db_url()
