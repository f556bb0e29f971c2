"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


def _split(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Tugger webhook configuration.

    Variable names match the ones used by existing deployments
    (DOCKER_REGISTRY_URL, WHITELIST_NAMESPACES, WEBHOOK_URL, ...).
    """

    # Server
    api_host: str = "0.0.0.0"
    api_port: int = 443
    log_level: str = "info"
    tls_cert: str = "/etc/admission-controller/tls/tls.crt"
    tls_key: str = "/etc/admission-controller/tls/tls.key"

    # Policy
    policy_file: str | None = None
    if_exists: bool = False
    docker_registry_url: str = ""
    registry_secret_name: str = ""
    whitelist_registries: str = ""
    whitelist_namespaces: str = ""

    # Registry probe
    registry_username: str | None = None
    registry_password: str | None = None
    registry_timeout_seconds: float = 10.0

    # Notifications
    env: str = ""
    webhook_url: str | None = None
    notification_timeout_seconds: float = 10.0
    notification_dedup_seconds: float = 60.0

    @property
    def whitelisted_namespaces(self) -> list[str]:
        return _split(self.whitelist_namespaces)

    @property
    def whitelisted_registries(self) -> list[str]:
        return _split(self.whitelist_registries)

    model_config = {"env_prefix": "", "case_sensitive": False}


settings = Settings()
