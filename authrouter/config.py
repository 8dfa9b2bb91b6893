# authrouter/config.py
from urllib.parse import urlsplit

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Listener
    host: str = "127.0.0.1"          # HOST
    port: int = 80                   # PORT

    # Upstream openHAB instance, e.g. http://openhab:8080
    target: str = ""                 # TARGET
    proxy_timeout: float = 30.0      # PROXY_TIMEOUT (connect/write, seconds)

    # Readiness probe hits {target}{readiness_path}
    readiness_path: str = "/rest/"   # READINESS_PATH
    readiness_timeout: float = 5.0   # READINESS_TIMEOUT

    # Path to the per-user policy (YAML)
    config_file: str = ""            # CONFIG_FILE

    # When true, rewritten requests are answered with a 308 to the new URI
    # instead of being forwarded transparently.
    redirect_rewrites: bool = False  # REDIRECT_REWRITES

    # Logging
    log_level: str = "info"          # LOG_LEVEL  error|warn|info|debug
    log_format: str = "auto"         # LOG_FORMAT auto|human|machine

    model_config = {"env_file": ".env", "case_sensitive": False}

    @property
    def target_base(self) -> str:
        return self.target.rstrip("/")

    def validate_startup(self) -> None:
        """Fail fast on settings the service cannot run without."""
        if not self.target:
            raise ValueError(
                "please set TARGET to the address of your openHAB instance, "
                "e.g. 'http://openhab:8080'"
            )
        if not self.config_file:
            raise ValueError("please set CONFIG_FILE to the path of your config.yaml file")
        parts = urlsplit(self.target)
        if not parts.scheme or not parts.netloc:
            raise ValueError(f"unable to parse target address '{self.target}'")


settings = Settings()
