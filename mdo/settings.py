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


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Docker
    docker_network: str = os.getenv("MDO_DOCKER_NETWORK", "eureka")
    docker_network_alias: str = os.getenv("MDO_DOCKER_NETWORK_ALIAS", "eureka-net")
    host_ip: str = os.getenv("MDO_HOST_IP", "0.0.0.0")
    container_prefix: str = os.getenv("MDO_CONTAINER_PREFIX", "eureka")
    vault_container: str = os.getenv("MDO_VAULT_CONTAINER", "vault")

    # In-container ports
    default_server_port: int = _env_int("MDO_DEFAULT_SERVER_PORT", 8081)
    default_debug_port: int = _env_int("MDO_DEFAULT_DEBUG_PORT", 5005)

    # Readiness
    readiness_host: str = os.getenv("MDO_READINESS_HOST", "localhost")
    readiness_path: str = os.getenv("MDO_READINESS_PATH", "/admin/health")
    readiness_max_attempts: int = _env_int("MDO_READINESS_MAX_ATTEMPTS", 50)
    readiness_delay_s: float = _env_float("MDO_READINESS_DELAY_S", 10.0)
    readiness_initial_delay_s: float = _env_float("MDO_READINESS_INITIAL_DELAY_S", 5.0)
    http_timeout_s: float = _env_float("MDO_HTTP_TIMEOUT_S", 5.0)

    # In-network service URLs handed to modules and sidecars
    vault_url: str = os.getenv("MDO_VAULT_URL", "http://vault.eureka:8200")
    keycloak_url: str = os.getenv("MDO_KEYCLOAK_URL", "http://keycloak.eureka:8080")
    kafka_address: str = os.getenv("MDO_KAFKA_ADDRESS", "kafka.eureka:9092")

    # Image registries
    snapshot_namespace: str = os.getenv("MDO_SNAPSHOT_NAMESPACE", "folioci")
    release_namespace: str = os.getenv("MDO_RELEASE_NAMESPACE", "folioorg")
    private_namespace_env: str = "AWS_ECR_FOLIO_REPO"

    # Local paths
    home_dir: str = os.getenv("MDO_HOME_DIR", os.path.join(os.path.expanduser("~"), ".eureka"))
    volume_placeholder: str = "$EUREKA"

    # Logging
    log_level: str = os.getenv("MDO_LOG_LEVEL", "INFO")
    log_json: bool = _env_bool("MDO_LOG_JSON", False)

    @property
    def private_namespace(self) -> str | None:
        return os.getenv(self.private_namespace_env) or None


settings = Settings()
