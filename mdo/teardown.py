from __future__ import annotations

from typing import Any

import docker
from docker.errors import DockerException

from .containers import list_containers
from .events import log_event
from .runtime import run_detached
from .settings import Settings, settings


def disconnect_network(client: docker.DockerClient, container: Any, cfg: Settings = settings) -> bool:
    """Detach ``container`` from the shared bridge network; failures are only warnings."""
    try:
        client.networks.get(cfg.docker_network).disconnect(container.id, force=False)
        return True
    except DockerException as e:
        log_event("WARN", f"Container {container.name} network is disconnected with warnings: {e}")
        return False


def remove_container(container: Any) -> None:
    container.remove(force=True, v=True)


def _remove_unsupervised(container: Any) -> None:
    def _task() -> None:
        try:
            remove_container(container)
        except DockerException as e:
            log_event("ERROR", f"Removing container {container.name} failed: {e}")

    run_detached(_task, name=f"remove-{container.name}")


def undeploy_container(
    client: docker.DockerClient,
    container: Any,
    remove_async: bool = False,
    cfg: Settings = settings,
) -> None:
    disconnect_network(client, container, cfg)
    # timeout=0 kills immediately; a container that is already stopped is a no-op.
    container.stop(timeout=0)
    if remove_async:
        _remove_unsupervised(container)
    else:
        remove_container(container)
    log_event("INFO", f"Undeployed container {container.name}")


def undeploy_by_pattern(
    client: docker.DockerClient,
    pattern: str,
    remove_async: bool = False,
    cfg: Settings = settings,
) -> int:
    """Stop and remove every container whose name matches ``pattern``.

    The pattern is passed to the daemon's name filter unchanged. Stop errors,
    and remove errors when ``remove_async`` is False, are raised. Returns the
    number of containers that were torn down.
    """
    containers = list_containers(client, pattern)
    if not containers:
        log_event("INFO", f"No containers match {pattern!r}")
        return 0
    for container in containers:
        undeploy_container(client, container, remove_async=remove_async, cfg=cfg)
    return len(containers)
