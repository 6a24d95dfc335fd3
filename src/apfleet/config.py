"""Controller configuration via environment variables and .env file."""

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings
from pydantic_settings.sources import DotEnvSettingsSource, PydanticBaseSettingsSource

# Path to .env file (patch in tests to use tmp_path / ".env")
_ENV_FILE: Path = Path(".env")


class Settings(BaseSettings):
    model_config = {
        "env_prefix": "APFLEET_",
        "env_file_encoding": "utf-8",
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Load .env from _ENV_FILE (patchable in tests)
        return (
            init_settings,
            env_settings,
            DotEnvSettingsSource(
                settings_cls,
                env_file=_ENV_FILE,
                env_file_encoding="utf-8",
            ),
            file_secret_settings,
        )

    # Database
    db_path: Path = Path("./data/apfleet.db")

    # Logging
    log_level: str = "info"

    # Tunnel interface and peer table (JSON), maintained by the peer provisioner
    tunnel_config_path: Path | None = None
    # Textual "host:port" endpoint handed to assets in push_config
    tunnel_endpoint: str | None = None
    # Binary used to derive the controller public key ("wg pubkey")
    wg_binary: str = "wg"

    # Datagram listeners
    control_port: int = 8838
    raw_auth_port: int = 8839
    raw_auth_bind: str = "0.0.0.0"

    # Timers (seconds)
    heartbeat_interval: float = 30
    push_debounce: float = 2.0
    station_ttl: float = 30

    # Listener restart backoff (seconds)
    restart_backoff_initial: float = 1.0
    restart_backoff_max: float = 60.0

    # Authentication for the management API (unset password disables it)
    auth_username: str = "admin"
    auth_password: str | None = None

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    @field_validator(
        "heartbeat_interval",
        "push_debounce",
        "station_ttl",
        "restart_backoff_initial",
        "restart_backoff_max",
    )
    @classmethod
    def positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be a positive number of seconds")
        return v

    @field_validator("tunnel_config_path", mode="before")
    @classmethod
    def empty_path_is_none(cls, v: object) -> object:
        """Treat APFLEET_TUNNEL_CONFIG_PATH="" as unset."""
        if isinstance(v, str) and not v.strip():
            return None
        return v


def load_config() -> Settings:
    """Load configuration from .env and environment (env overrides .env)."""
    return Settings()


settings = Settings()
