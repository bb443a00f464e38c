from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .database import DatabaseConfig
from .push import PushConfig
from .redis import RedisConfig


class AppConfigs(BaseSettings):
    """Root settings object.

    Every field can be overridden from the environment with the ``FORFEIT_``
    prefix; nested sections use ``_`` as delimiter, e.g.
    ``FORFEIT_PUSH_VAPIDPRIVATEKEY`` or ``FORFEIT_DATABASE_ENGINE``.
    """

    model_config = SettingsConfigDict(
        env_prefix="FORFEIT_",
        env_nested_delimiter="_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    Host: str = Field(default="0.0.0.0", description="API bind host")
    Port: int = Field(default=48196, description="API bind port")
    Debug: bool = Field(default=False, description="Enable reload and debug logging")
    LogLevel: str = Field(default="INFO", description="Root log level")

    Push: PushConfig = Field(default_factory=lambda: PushConfig(), description="Web Push configuration")
    Database: DatabaseConfig = Field(default_factory=lambda: DatabaseConfig(), description="Database configuration")
    Redis: RedisConfig = Field(default_factory=lambda: RedisConfig(), description="Redis configuration")


configs = AppConfigs()

__all__ = ["AppConfigs", "configs"]
