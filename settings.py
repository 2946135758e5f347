from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # `.env.prod` takes priority over `.env`
        env_file=(".env", ".env.prod")
    )

    # Database (DATABASE_URL wins, then DB_HOST & friends, then local SQLite)
    database_url: Optional[str] = None
    db_host: Optional[str] = None
    db_user: str = "postgres"
    db_password: str = ""
    db_port: str = "5432"
    db_name: str = "postgres"
    create_tables_on_startup: bool = True

    # Cognito Settings (Optional for local dev)
    auth_enabled: bool = False
    cognito_user_pool_id: Optional[str] = None
    cognito_app_client_id: Optional[str] = None
    aws_region: Optional[str] = None

    # Logging
    log_format: str = "json"
    log_level: str = "INFO"

    # Listing defaults
    default_page_size: int = 20
    max_page_size: int = 100
    featured_limit: int = 6

    cors_origins: List[str] = [
        "http://localhost",
        "http://localhost:5000",
        "http://127.0.0.1",
        "http://127.0.0.1:5000",
    ]

    @property
    def sqlalchemy_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        if self.db_host:
            return (
                f"postgresql://{self.db_user}:{self.db_password}"
                f"@{self.db_host}:{self.db_port}/{self.db_name}"
            )
        # Default to local SQLite file for simple local development
        return "sqlite:///./prodmarket.db"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
