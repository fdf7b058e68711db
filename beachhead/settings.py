from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_opt_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        return None


# Share of the expiration time after which registrations are refreshed.
REFRESH_RATIO = 0.45


@dataclass(frozen=True)
class Settings:
    # Store
    store: str = os.getenv("BHC_STORE", "redis")  # redis|memory
    redis_host: str = os.getenv("BHC_REDIS_HOST", "localhost")
    redis_port: int = _env_int("BHC_REDIS_PORT", 6379)
    redis_db: int = _env_int("BHC_REDIS_DB", 0)
    redis_password: str | None = os.getenv("BHC_REDIS_PASSWORD")
    key_prefix: str = os.getenv("BHC_KEY_PREFIX", "beachhead:domains:")

    # Expiration / refresh
    expire_s: int = _env_int("BHC_EXPIRE_S", 60)
    enable_expire: bool = _env_bool("BHC_ENABLE_EXPIRE", True)
    refresh_s: int | None = _env_opt_int("BHC_REFRESH_S")

    # Inspection
    docker_url: str = os.getenv("BHC_DOCKER_URL", "unix://var/run/docker.sock")
    # Address backends by container name (user-defined network) instead of bridge IP.
    docker_network: bool = _env_bool("BHC_DOCKER_NETWORK", False)
    envvar: str = os.getenv("BHC_ENVVAR", "BEACHHEAD_DOMAINS")
    strict_parse: bool = _env_bool("BHC_STRICT_PARSE", False)

    # Loop
    workers: int = _env_int("BHC_WORKERS", 1)
    dry_run: bool = _env_bool("BHC_DRY_RUN", False)
    stop_timeout_s: int = _env_int("BHC_STOP_TIMEOUT_S", 10)

    # Observability (optional)
    events_db: str | None = os.getenv("BHC_EVENTS_DB")
    api_host: str = os.getenv("BHC_API_HOST", "127.0.0.1")
    api_port: int = _env_int("BHC_API_PORT", 0)

    @property
    def ttl_s(self) -> int | None:
        """Expiration applied to published keys, or None when keys never expire."""
        if not self.enable_expire or self.expire_s <= 0:
            return None
        return self.expire_s

    @property
    def poll_interval_s(self) -> int:
        """Seconds between ticks. 0 means publish once and exit."""
        if self.refresh_s is not None:
            return max(0, self.refresh_s)
        ttl = self.ttl_s
        if ttl is None:
            return 0
        return max(1, int(ttl * REFRESH_RATIO))


settings = Settings()
