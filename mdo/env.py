from __future__ import annotations

from typing import Mapping

from .composer import BackendModuleSpec
from .registry import ModuleDescriptor
from .settings import Settings, settings


def vault_env(vault_root_token: str, cfg: Settings = settings) -> dict[str, str]:
    return {
        "SECRET_STORE_TYPE": "VAULT",
        "SECRET_STORE_VAULT_TOKEN": vault_root_token,
        "SECRET_STORE_VAULT_ADDRESS": cfg.vault_url,
    }


def okapi_env(sidecar_name: str, port: int) -> dict[str, str]:
    url = f"http://{sidecar_name}:{port}"
    return {
        "OKAPI_HOST": sidecar_name,
        "OKAPI_PORT": str(port),
        "OKAPI_SERVICE_HOST": sidecar_name,
        "OKAPI_SERVICE_PORT": str(port),
        "OKAPI_SERVICE_URL": url,
        "OKAPI_URL": url,
    }


def disable_system_user_env() -> dict[str, str]:
    return {
        "SYSTEM_USER_CREATE": "false",
        "SYSTEM_USER_ENABLED": "false",
    }


def keycloak_env(cfg: Settings = settings) -> dict[str, str]:
    return {
        "KC_URL": cfg.keycloak_url,
        "KC_URI_VALIDATION_ENABLED": "false",
    }


def sidecar_env(
    descriptor: ModuleDescriptor,
    version: str,
    port: int,
    module_url: str | None = None,
    sidecar_url: str | None = None,
) -> dict[str, str]:
    return {
        "MODULE_NAME": descriptor.name,
        "MODULE_VERSION": version,
        "MODULE_URL": module_url or f"http://{descriptor.name}:{port}",
        "SIDECAR_NAME": descriptor.sidecar_name,
        "SIDECAR_URL": sidecar_url or f"http://{descriptor.sidecar_name}:{port}",
        "QUARKUS_HTTP_PORT": str(port),
    }


def compose_module_env(
    global_env: Mapping[str, str],
    descriptor: ModuleDescriptor,
    spec: BackendModuleSpec,
    vault_root_token: str,
    cfg: Settings = settings,
) -> dict[str, str]:
    """Global env, then the optional vault/okapi/system-user blocks, then module overrides."""
    env = dict(global_env)
    if spec.use_vault:
        env.update(vault_env(vault_root_token, cfg))
    if spec.use_okapi_url:
        env.update(okapi_env(descriptor.sidecar_name, spec.container_server_port))
    if spec.disable_system_user:
        env.update(disable_system_user_env())
    env.update(spec.environment)
    return env


def compose_sidecar_env(
    sidecar_base_env: Mapping[str, str],
    descriptor: ModuleDescriptor,
    spec: BackendModuleSpec,
    version: str,
    vault_root_token: str,
    cfg: Settings = settings,
    module_url: str | None = None,
    sidecar_url: str | None = None,
) -> dict[str, str]:
    env = dict(sidecar_base_env)
    env.update(vault_env(vault_root_token, cfg))
    env.update(keycloak_env(cfg))
    env.update(sidecar_env(descriptor, version, spec.container_server_port, module_url, sidecar_url))
    return env


def as_docker_env(env: Mapping[str, str]) -> list[str]:
    return [f"{k}={v}" for k, v in env.items()]
