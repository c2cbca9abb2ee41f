"""应用配置 - 通过环境变量 / .env 文件加载"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "change-this-jwt-secret-in-production"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="APK_SHOP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    data_dir: str = Field(default="data", description="Blob Store 根目录")
    database_url: str = Field(default="sqlite:///./data/apk_shop.db")

    # Security
    jwt_secret: str = Field(default=DEFAULT_JWT_SECRET)
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=24 * 60)

    # Upload limits
    max_upload_bytes: int = Field(default=500 * 1024 * 1024)
    max_bulk_files: int = Field(default=10)

    # Default admin account
    seed_admin: bool = Field(default=True)
    admin_username: str = Field(default="admin")
    admin_email: str = Field(default="admin@apkshop.local")
    admin_password: str = Field(default="admin123")

    # Logging / HTTP
    log_level: str = Field(default="INFO")
    cors_origins: list[str] = Field(default=["*"])


@lru_cache
def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
