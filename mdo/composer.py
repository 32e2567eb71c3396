"""Build per-module specs from config entries.

A spec is built once per module per run and is never mutated afterwards. All
host ports come from one :class:`PortRange`, so ports are pairwise distinct
across every module of the run. The composer must be driven from a single
thread, before any deployment thread starts.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping

from .config_models import ModuleConfig, ResourceConfig
from .errors import MissingDescriptorError, MissingVolumeError, PortConflictError
from .events import log_event
from .ports import PortRange, allocate, is_port_free
from .registry import is_edge_module, is_management_module
from .settings import Settings, settings

MIB = 1024 * 1024

_WINDOWS_DRIVE_RE = re.compile(r"^[A-Za-z]:[\\/]")


def mib_to_bytes(value: int) -> int:
    # -1 is the docker "unlimited" marker and must survive conversion.
    if value < 0:
        return -1
    return value * MIB


@dataclass(frozen=True)
class ResourceLimits:
    cpu_count: int
    memory: int
    memory_reservation: int
    memory_swap: int
    oom_kill_disable: bool = False

    @classmethod
    def module_defaults(cls) -> "ResourceLimits":
        return cls(cpu_count=1, memory=mib_to_bytes(750), memory_reservation=mib_to_bytes(128), memory_swap=-1)

    @classmethod
    def sidecar_defaults(cls) -> "ResourceLimits":
        return cls(cpu_count=1, memory=mib_to_bytes(450), memory_reservation=mib_to_bytes(64), memory_swap=-1)

    @classmethod
    def from_config(cls, cfg: ResourceConfig | None, sidecar: bool = False) -> "ResourceLimits":
        """Config values are MiB; missing fields fall back to the defaults."""
        base = cls.sidecar_defaults() if sidecar else cls.module_defaults()
        if cfg is None:
            return base
        return cls(
            cpu_count=base.cpu_count if cfg.cpu_count is None else cfg.cpu_count,
            memory=base.memory if cfg.memory is None else mib_to_bytes(cfg.memory),
            memory_reservation=(
                base.memory_reservation if cfg.memory_reservation is None else mib_to_bytes(cfg.memory_reservation)
            ),
            memory_swap=base.memory_swap if cfg.memory_swap is None else mib_to_bytes(cfg.memory_swap),
            oom_kill_disable=base.oom_kill_disable if cfg.oom_kill_disable is None else cfg.oom_kill_disable,
        )


@dataclass(frozen=True)
class BackendModuleSpec:
    """Deployment plan for one backend module and its optional sidecar.

    Host ports are 0 when not allocated. ``container_server_port`` is the port
    the module listens on inside its container; both the module and sidecar
    bindings target it.
    """

    name: str
    deploy_module: bool
    deploy_sidecar: bool
    use_vault: bool = False
    use_okapi_url: bool = False
    disable_system_user: bool = False
    local_descriptor_path: str | None = None
    version: str | None = None
    module_server_port: int = 0
    module_debug_port: int = 0
    sidecar_server_port: int = 0
    sidecar_debug_port: int = 0
    container_server_port: int = 8081
    environment: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    resources: ResourceLimits = field(default_factory=ResourceLimits.module_defaults)
    volumes: tuple[str, ...] = ()

    @property
    def host_ports(self) -> tuple[int, ...]:
        ports = (self.module_server_port, self.module_debug_port, self.sidecar_server_port, self.sidecar_debug_port)
        return tuple(p for p in ports if p)


def _split_volume(volume: str) -> tuple[str, str]:
    """Split ``host:container[:mode]`` into the host path and the rest."""
    offset = 2 if _WINDOWS_DRIVE_RE.match(volume) else 0
    idx = volume.find(":", offset)
    if idx < 0:
        return volume, ""
    return volume[:idx], volume[idx:]


class SpecComposer:
    def __init__(
        self,
        port_range: PortRange,
        cfg: Settings = settings,
        probe: Callable[[int], bool] = is_port_free,
        path_exists: Callable[[str], bool] = os.path.exists,
    ):
        self.port_range = port_range
        self.cfg = cfg
        self._probe = probe
        self._exists = path_exists
        # pinned host port -> module that pinned it
        self._pinned: dict[int, str] = {}

    def _allocate(self) -> int:
        return allocate(self.port_range, probe=self._probe)

    def reserve_pinned(self, name: str, port: int) -> None:
        """Reserve a port fixed in config; it must be unique across the run and bindable."""
        owner = self._pinned.get(port)
        if owner == name:
            return
        if owner is not None:
            raise PortConflictError(name, port, f"already pinned by module: {owner}")
        if port in self.port_range.reserved:
            raise PortConflictError(name, port, "already reserved by another module")
        if not self._probe(port):
            raise PortConflictError(name, port, "already in use on the host")
        self._pinned[port] = name
        self.port_range.reserved.add(port)

    def sidecar_allowed(self, name: str) -> bool:
        return not is_management_module(name) and not is_edge_module(name)

    def resolve_volumes(self, module: str, volumes: list[str]) -> tuple[str, ...]:
        resolved: list[str] = []
        for volume in volumes:
            volume = volume.replace(self.cfg.volume_placeholder, self.cfg.home_dir)
            host, rest = _split_volume(volume)
            host = os.path.abspath(os.path.expanduser(host))
            if not self._exists(host):
                raise MissingVolumeError(module, host)
            resolved.append(f"{host}{rest}")
        return tuple(resolved)

    def compose(self, name: str, entry: ModuleConfig | None) -> BackendModuleSpec:
        """Build the spec for ``name``; ``entry=None`` applies all defaults."""
        entry = entry if entry is not None else ModuleConfig()

        if entry.local_descriptor_path and not self._exists(entry.local_descriptor_path):
            raise MissingDescriptorError(name, entry.local_descriptor_path)

        deploy_sidecar = self.sidecar_allowed(name) and (entry.deploy_sidecar is not False)
        volumes = self.resolve_volumes(name, entry.volumes)
        container_port = entry.port_server or self.cfg.default_server_port

        module_server = module_debug = sidecar_server = sidecar_debug = 0
        if entry.deploy_module:
            if entry.port is not None:
                self.reserve_pinned(name, entry.port)
                module_server = entry.port
            else:
                module_server = self._allocate()
            module_debug = self._allocate()
            if deploy_sidecar:
                sidecar_server = self._allocate()
                sidecar_debug = self._allocate()

        return BackendModuleSpec(
            name=name,
            deploy_module=entry.deploy_module,
            deploy_sidecar=deploy_sidecar,
            use_vault=entry.use_vault,
            use_okapi_url=entry.use_okapi_url,
            disable_system_user=entry.disable_system_user,
            local_descriptor_path=entry.local_descriptor_path,
            version=entry.version,
            module_server_port=module_server,
            module_debug_port=module_debug,
            sidecar_server_port=sidecar_server,
            sidecar_debug_port=sidecar_debug,
            container_server_port=container_port,
            environment=MappingProxyType(dict(entry.environment)),
            resources=ResourceLimits.from_config(entry.resources),
            volumes=volumes,
        )

    def compose_all(
        self,
        modules: Mapping[str, ModuleConfig | None],
        management_only: bool = False,
    ) -> dict[str, BackendModuleSpec]:
        """Compose every module of one deployment mode, in name order.

        Pinned ports are reserved up front so allocated ports never collide
        with them; a port pinned twice raises :class:`PortConflictError`
        before any port is allocated.
        """
        selected = sorted(n for n in modules if is_management_module(n) == management_only)
        if not selected:
            log_event("INFO", "No backend modules were found in config")
            return {}

        for n in selected:
            entry = modules[n]
            if entry is not None and entry.deploy_module and entry.port is not None:
                self.reserve_pinned(n, entry.port)

        specs: dict[str, BackendModuleSpec] = {}
        for n in selected:
            spec = self.compose(n, modules[n])
            specs[n] = spec
            info = n if spec.version is None else f"{n} with fixed version {spec.version}"
            log_event(
                "INFO",
                f"Found backend module in config: {info}, reserved ports: "
                f"{spec.module_server_port} {spec.module_debug_port} {spec.sidecar_server_port} {spec.sidecar_debug_port}",
            )
        return specs
