from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "TechLab Products API"
    database_url: str = Field(..., min_length=1, description="MongoDB connection string")
    database_name: str = Field(..., min_length=1, description="MongoDB database (project) name")
    jwt_secret: str = Field(..., min_length=1, description="Signing secret for access tokens")
    jwt_algorithm: str = "HS256"
    environment: str = "development"
    frontend_url: str = "*"
    port: int = 8000
    default_admin_email: Optional[str] = None
    default_admin_password: Optional[str] = None
    default_admin_name: str = "Administrator"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


settings = Settings()
