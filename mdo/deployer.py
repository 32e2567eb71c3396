from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Mapping, Sequence

import docker

from .composer import BackendModuleSpec, ResourceLimits
from .containers import (
    ContainerRef,
    ContainerSpec,
    container_name,
    create_and_start,
    image_present,
    list_containers,
    new_module_container,
    new_sidecar_container,
    pull_image,
    refs,
)
from .env import compose_module_env, compose_sidecar_env
from .errors import DeploymentError, SidecarDeployError
from .events import log_event
from .registry import ModuleDescriptor, RegistryAuth, is_management_module, module_image, no_registry_auth
from .runtime import FailureLog, WorkerGroup
from .settings import Settings, settings

# Module name -> exposed host server port.
DeploymentResult = dict[str, int]


@dataclass(frozen=True)
class ModuleSet:
    """Inputs of one deployment call.

    ``registry_modules`` must already be in the fixed registry order; modules
    within a registry deploy in listed order.
    """

    registry_modules: Mapping[str, Sequence[ModuleDescriptor]]
    backend_modules: Mapping[str, BackendModuleSpec]
    global_env: Mapping[str, str] = field(default_factory=dict)
    sidecar_env: Mapping[str, str] = field(default_factory=dict)
    vault_root_token: str = ""
    management_only: bool = False

    @classmethod
    def core_and_business(
        cls,
        registry_modules: Mapping[str, Sequence[ModuleDescriptor]],
        backend_modules: Mapping[str, BackendModuleSpec],
        global_env: Mapping[str, str],
        sidecar_env: Mapping[str, str],
        vault_root_token: str = "",
    ) -> "ModuleSet":
        return cls(registry_modules, backend_modules, global_env, sidecar_env, vault_root_token, False)

    @classmethod
    def management(
        cls,
        registry_modules: Mapping[str, Sequence[ModuleDescriptor]],
        backend_modules: Mapping[str, BackendModuleSpec],
        global_env: Mapping[str, str],
        vault_root_token: str = "",
    ) -> "ModuleSet":
        return cls(registry_modules, backend_modules, global_env, {}, vault_root_token, True)


@dataclass(frozen=True)
class SidecarRequest:
    module_set: ModuleSet
    descriptor: ModuleDescriptor
    spec: BackendModuleSpec
    version: str
    image: str
    resources: ResourceLimits


class ModuleDeployer:
    """Creates and starts module containers and their sidecars."""

    def __init__(
        self,
        client: docker.DockerClient,
        profile: str,
        cfg: Settings = settings,
        auth: RegistryAuth = no_registry_auth,
    ):
        self.client = client
        self.profile = profile
        self.cfg = cfg
        self.auth = auth

    def container_name(self, logical_name: str) -> str:
        return container_name(logical_name, self.profile, self.cfg)

    def image_version(self, spec: BackendModuleSpec, descriptor: ModuleDescriptor) -> str:
        # A version pinned in config wins over the registry's.
        return spec.version if spec.version is not None else descriptor.version

    def iter_deployable(self, module_set: ModuleSet) -> Iterator[tuple[str, ModuleDescriptor, BackendModuleSpec]]:
        for registry, descriptors in module_set.registry_modules.items():
            for descriptor in descriptors:
                if is_management_module(descriptor.name) != module_set.management_only:
                    continue
                spec = module_set.backend_modules.get(descriptor.name)
                if spec is None or not spec.deploy_module:
                    continue
                yield registry, descriptor, spec

    def find_backend_module(
        self, module_set: ModuleSet, name: str
    ) -> tuple[BackendModuleSpec, ModuleDescriptor] | None:
        for _, descriptor, spec in self.iter_deployable(module_set):
            if descriptor.name == name:
                return spec, descriptor
        return None

    def deploy_container(self, spec: ContainerSpec) -> ContainerRef:
        """Pull (only if not cached and requested), create and start one container."""
        name = self.container_name(spec.name)
        if spec.pull_image and not image_present(self.client, spec.image):
            pull_image(self.client, spec.image, self.auth)
        ref = create_and_start(self.client, spec, name)
        log_event("INFO", f"Deployed {spec.kind} {name} from image {spec.image}", module=spec.name)
        return ref

    def deploy_modules(
        self,
        module_set: ModuleSet,
        sidecar_image: str,
        sidecar_resources: ResourceLimits,
    ) -> DeploymentResult:
        """Deploy every selected module, and its sidecar on a worker thread.

        Primary containers deploy one after another on the calling thread; a
        primary failure is raised as-is. Sidecars start concurrently with later
        primaries. The call returns only after every sidecar attempt has
        finished, raising :class:`DeploymentError` with all sidecar failures
        if any occurred. Nothing is rolled back.
        """
        deployed: DeploymentResult = {}
        sidecars = WorkerGroup("sidecar")
        failures = FailureLog()

        try:
            current_registry = None
            for registry, descriptor, spec in self.iter_deployable(module_set):
                if registry != current_registry:
                    current_registry = registry
                    log_event("INFO", f"Deploying {registry} modules")

                version = self.image_version(spec, descriptor)
                image = module_image(descriptor, version, self.cfg)
                env = compose_module_env(module_set.global_env, descriptor, spec, module_set.vault_root_token, self.cfg)
                self.deploy_container(new_module_container(descriptor, image, env, spec, self.profile, self.cfg))
                deployed[descriptor.name] = spec.module_server_port

                if spec.deploy_sidecar and sidecar_image:
                    req = SidecarRequest(module_set, descriptor, spec, version, sidecar_image, sidecar_resources)
                    sidecars.spawn(self._deploy_sidecar, req, failures)
        finally:
            sidecars.wait()

        if failures:
            raise DeploymentError(failures.errors(), deployed=deployed)
        return deployed

    def _deploy_sidecar(self, req: SidecarRequest, failures: FailureLog) -> None:
        try:
            env = compose_sidecar_env(
                req.module_set.sidecar_env,
                req.descriptor,
                req.spec,
                req.version,
                req.module_set.vault_root_token,
                self.cfg,
            )
            self.deploy_container(
                new_sidecar_container(req.descriptor, req.image, env, req.spec, req.resources, self.profile, cfg=self.cfg)
            )
        except Exception as e:
            err = SidecarDeployError(req.descriptor.sidecar_name, e)
            log_event("ERROR", str(err), module=req.descriptor.name)
            failures.add(req.descriptor.sidecar_name, err)

    def list_deployed(self, pattern: str) -> list[ContainerRef]:
        return refs(list_containers(self.client, pattern))
