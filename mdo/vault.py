from __future__ import annotations

import docker
from docker.errors import NotFound

from .errors import VaultTokenError
from .settings import Settings, settings

ROOT_TOKEN_MARKER = "init.sh: Root VAULT TOKEN is:"


def token_from_logs(logs: str) -> str | None:
    for line in logs.splitlines():
        idx = line.find(ROOT_TOKEN_MARKER)
        if idx >= 0:
            token = line[idx + len(ROOT_TOKEN_MARKER):].strip()
            if token:
                return token
    return None


def get_vault_root_token(client: docker.DockerClient, cfg: Settings = settings) -> str:
    """Root token printed by the vault container's init script."""
    try:
        container = client.containers.get(cfg.vault_container)
    except NotFound as e:
        raise VaultTokenError(f"Vault container '{cfg.vault_container}' is not running") from e
    raw = container.logs(stdout=True, stderr=True)
    token = token_from_logs(raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw))
    if not token:
        raise VaultTokenError(f"Root token not found in '{cfg.vault_container}' container logs")
    return token
