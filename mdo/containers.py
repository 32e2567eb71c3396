from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import docker
from docker.errors import DockerException, ImageNotFound, NotFound
from docker.utils import parse_repository_tag

from .composer import BackendModuleSpec, ResourceLimits
from .env import as_docker_env
from .errors import ImagePullError
from .events import log_event
from .registry import ModuleDescriptor, RegistryAuth, is_management_module, no_registry_auth
from .settings import Settings, settings

CONTAINER_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.\-]{0,127}$")

MODULE_KIND = "module"
SIDECAR_KIND = "sidecar"


def validate_container_name(name: str) -> None:
    if not CONTAINER_NAME_RE.match(name):
        raise ValueError(f"Invalid container name {name!r}. Use letters/numbers and -._ (max 128 chars).")


@dataclass(frozen=True)
class ContainerRef:
    id: str
    name: str
    ports: tuple[str, ...] = ()


@dataclass(frozen=True)
class ContainerSpec:
    """Everything needed to create one container; handed to the runtime as-is."""

    name: str
    image: str
    kind: str
    env: tuple[str, ...]
    exposed_ports: tuple[str, ...]
    port_bindings: Mapping[str, tuple[str, int]]
    resource_limits: ResourceLimits
    network: str
    network_aliases: tuple[str, ...]
    volumes: tuple[str, ...] = ()
    pull_image: bool = True
    labels: Mapping[str, str] = field(default_factory=dict)


def container_name(logical_name: str, profile: str, cfg: Settings = settings) -> str:
    """``eureka-<profile>-<name>``; management containers are shared across profiles."""
    if is_management_module(logical_name):
        return f"{cfg.container_prefix}-{logical_name}"
    return f"{cfg.container_prefix}-{profile}-{logical_name}"


def all_containers_pattern(cfg: Settings = settings) -> str:
    return f"^{cfg.container_prefix}-"


def profile_containers_pattern(profile: str, cfg: Settings = settings) -> str:
    return f"^{cfg.container_prefix}-{profile}-"


def management_containers_pattern(cfg: Settings = settings) -> str:
    return f"^{cfg.container_prefix}-mgr-"


def single_module_pattern(profile: str, module: str, cfg: Settings = settings) -> str:
    """Matches one module container and its sidecar."""
    m = re.escape(module)
    return f"^{cfg.container_prefix}-{re.escape(profile)}-({m}|{m}-sc)$"


def port_bindings(host_server: int, host_debug: int, server_port: int, cfg: Settings = settings) -> dict[str, tuple[str, int]]:
    return {
        f"{server_port}/tcp": (cfg.host_ip, host_server),
        f"{cfg.default_debug_port}/tcp": (cfg.host_ip, host_debug),
    }


def exposed_ports(server_port: int, cfg: Settings = settings) -> tuple[str, ...]:
    return (f"{server_port}/tcp", f"{cfg.default_debug_port}/tcp")


def new_module_container(
    descriptor: ModuleDescriptor,
    image: str,
    env: Mapping[str, str],
    spec: BackendModuleSpec,
    profile: str,
    cfg: Settings = settings,
) -> ContainerSpec:
    return ContainerSpec(
        name=descriptor.name,
        image=image,
        kind=MODULE_KIND,
        env=tuple(as_docker_env(env)),
        exposed_ports=exposed_ports(spec.container_server_port, cfg),
        port_bindings=port_bindings(spec.module_server_port, spec.module_debug_port, spec.container_server_port, cfg),
        resource_limits=spec.resources,
        network=cfg.docker_network,
        network_aliases=(descriptor.name, cfg.docker_network_alias),
        volumes=spec.volumes,
        pull_image=True,
        labels={"mdo.module": descriptor.name, "mdo.profile": profile, "mdo.kind": MODULE_KIND},
    )


def new_sidecar_container(
    descriptor: ModuleDescriptor,
    image: str,
    env: Mapping[str, str],
    spec: BackendModuleSpec,
    resources: ResourceLimits,
    profile: str,
    pull_image: bool = False,
    cfg: Settings = settings,
) -> ContainerSpec:
    return ContainerSpec(
        name=descriptor.sidecar_name,
        image=image,
        kind=SIDECAR_KIND,
        env=tuple(as_docker_env(env)),
        exposed_ports=exposed_ports(spec.container_server_port, cfg),
        port_bindings=port_bindings(spec.sidecar_server_port, spec.sidecar_debug_port, spec.container_server_port, cfg),
        resource_limits=resources,
        network=cfg.docker_network,
        network_aliases=(descriptor.sidecar_name, cfg.docker_network_alias),
        pull_image=pull_image,
        labels={"mdo.module": descriptor.name, "mdo.profile": profile, "mdo.kind": SIDECAR_KIND},
    )


def create_kwargs(spec: ContainerSpec, name: str, endpoint_config: Any) -> dict[str, Any]:
    """Keyword arguments for ``DockerClient.containers.create``."""
    limits = spec.resource_limits
    kwargs: dict[str, Any] = {
        "name": name,
        "hostname": spec.name,
        "detach": True,
        "environment": list(spec.env),
        "ports": dict(spec.port_bindings),
        "labels": dict(spec.labels),
        "network": spec.network,
        "networking_config": {spec.network: endpoint_config},
        "mem_limit": limits.memory,
        "mem_reservation": limits.memory_reservation,
        "memswap_limit": limits.memory_swap,
        "oom_kill_disable": limits.oom_kill_disable,
        # Lifecycle is owned by this tool; keep the docker restart policy off.
        "restart_policy": {"Name": "no"},
    }
    if limits.cpu_count > 0:
        kwargs["nano_cpus"] = limits.cpu_count * 1_000_000_000
    if spec.volumes:
        kwargs["volumes"] = list(spec.volumes)
    return kwargs


def docker_client() -> docker.DockerClient:
    return docker.from_env()


def docker_available(client: docker.DockerClient) -> bool:
    try:
        client.ping()
        return True
    except DockerException:
        return False


def ensure_network(client: docker.DockerClient, cfg: Settings = settings) -> None:
    try:
        client.networks.get(cfg.docker_network)
    except NotFound:
        client.networks.create(cfg.docker_network, driver="bridge")
        log_event("INFO", f"Created docker network '{cfg.docker_network}'.")


def image_present(client: docker.DockerClient, image: str) -> bool:
    try:
        client.images.get(image)
        return True
    except ImageNotFound:
        return False


def pull_image(client: docker.DockerClient, image: str, auth: RegistryAuth = no_registry_auth) -> None:
    """Pull ``image``, streaming progress to the debug log.

    An error event in the stream raises :class:`ImagePullError`; malformed
    progress events are only logged.
    """
    repository, tag = parse_repository_tag(image)
    auth_config = auth()
    stream = client.api.pull(repository, tag=tag or "latest", stream=True, decode=True, auth_config=auth_config)
    for event in stream:
        if not isinstance(event, dict):
            log_event("WARN", f"Unexpected pull event for {image}: {event!r}")
            continue
        if event.get("error"):
            raise ImagePullError(image, str(event.get("error")))
        detail = event.get("progressDetail") or {}
        if not isinstance(detail, dict):
            log_event("WARN", f"Malformed pull progress for {image}: {detail!r}")
            continue
        current = detail.get("current")
        total = detail.get("total")
        if current is not None and total:
            log_event("DEBUG", f"Pulling {image}: {event.get('status', '')} {current // (1024 * 1024)}/{total // (1024 * 1024)} MiB")
        else:
            log_event("DEBUG", f"Pulling {image}: {event.get('status', '')}")
    log_event("INFO", f"Pulled image {image}")


def create_and_start(client: docker.DockerClient, spec: ContainerSpec, name: str) -> ContainerRef:
    validate_container_name(name)
    endpoint = client.api.create_endpoint_config(aliases=list(spec.network_aliases))
    container = client.containers.create(spec.image, **create_kwargs(spec, name, endpoint))
    container.start()
    return ContainerRef(id=container.id, name=name, ports=tuple(spec.port_bindings))


def list_containers(client: docker.DockerClient, pattern: str) -> list[Any]:
    """Containers (running or not) whose name matches ``pattern`` per the daemon's name filter."""
    return client.containers.list(all=True, filters={"name": pattern})


def published_ports(container: Any) -> tuple[str, ...]:
    ports = (getattr(container, "attrs", None) or {}).get("HostConfig", {}).get("PortBindings") or {}
    out: list[str] = []
    for private, bindings in sorted(ports.items()):
        for b in bindings or []:
            out.append(f"{b.get('HostPort')}->{private}")
    return tuple(out)


def refs(containers: Iterable[Any]) -> list[ContainerRef]:
    return [ContainerRef(id=c.id, name=c.name, ports=published_ports(c)) for c in containers]
