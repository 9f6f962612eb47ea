"""Application configuration via Pydantic Settings."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite+aiosqlite:///./ezd6.db"

    # Chat / rolls
    default_room_id: str = "world"
    relay_channel: str = "system.ezd6"
    dom_wait_timeout: float = 3.0  # seconds to wait for a transcript node
    fallback_health: int = 3  # burn budget when the actor has no #health pool
    resource_batch_window: float = 0.05  # seconds
    max_chat_dice: int = 6

    # Auth / JWT
    jwt_secret_key: str = "dev-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 1440  # 24 hours

    # Default admin bootstrap
    default_admin_username: str = ""
    default_admin_password: str = ""
    default_admin_email: str | None = None

    # App
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_debug: bool = True
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def database_url_sync(self) -> str:
        """Sync version of database_url for Alembic CLI."""
        return self.database_url.replace("+aiosqlite", "").replace("+asyncpg", "")


settings = Settings()
