"""Registry metadata: which modules exist, at which version, under which image."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

import requests

from .config_models import SidecarModuleConfig
from .errors import RegistryError
from .events import log_event
from .settings import Settings, settings

FOLIO_REGISTRY = "folio"
EUREKA_REGISTRY = "eureka"
REGISTRY_ORDER = (FOLIO_REGISTRY, EUREKA_REGISTRY)

MANAGEMENT_PREFIX = "mgr-"
EDGE_PREFIX = "edge"
SIDECAR_PROJECT = "folio-module-sidecar"

MODULE_ID_RE = re.compile(r"^(?P<name>[a-z][a-z0-9_\-]*?)-(?P<version>\d[A-Za-z0-9_\-\.\+]*)$")

# Returns a docker auth config ({"username": ..., "password": ...}) or None for public registries.
RegistryAuth = Callable[[], "dict[str, str] | None"]


@dataclass(frozen=True)
class ModuleDescriptor:
    id: str
    name: str
    version: str
    sidecar_name: str
    action: str = "enable"


def is_management_module(name: str) -> bool:
    return name.startswith(MANAGEMENT_PREFIX)


def is_edge_module(name: str) -> bool:
    return name.startswith(EDGE_PREFIX)


def parse_module_id(module_id: str) -> tuple[str, str]:
    """Split ``mod-orders-13.1.0-SNAPSHOT.1021`` into name and version."""
    m = MODULE_ID_RE.match(module_id.strip())
    if not m:
        raise RegistryError(f"Cannot parse module id: {module_id!r}")
    return m.group("name"), m.group("version")


def sidecar_name_for(name: str) -> str:
    # Edge modules act as their own sidecar.
    if is_edge_module(name):
        return name
    return f"{name}-sc"


def descriptor_from_entry(entry: Mapping[str, Any]) -> ModuleDescriptor:
    module_id = str(entry.get("id", ""))
    name, version = parse_module_id(module_id)
    return ModuleDescriptor(
        id=module_id,
        name=name,
        version=version,
        sidecar_name=sidecar_name_for(name),
        action=str(entry.get("action", "enable")),
    )


def ordered_registries(names: Iterable[str]) -> list[str]:
    """Fixed iteration order: known registries first, the rest alphabetically."""
    names = list(names)
    known = [n for n in REGISTRY_ORDER if n in names]
    return known + sorted(n for n in names if n not in REGISTRY_ORDER)


def extract_descriptors(raw: Mapping[str, Iterable[Mapping[str, Any]]]) -> dict[str, list[ModuleDescriptor]]:
    """Turn raw install JSON per registry into ordered descriptor lists."""
    out: dict[str, list[ModuleDescriptor]] = {}
    for registry in ordered_registries(raw.keys()):
        entries = sorted(raw[registry], key=lambda e: str(e.get("id", "")))
        descriptors: list[ModuleDescriptor] = []
        for entry in entries:
            if entry.get("id") == "okapi":
                continue
            descriptors.append(descriptor_from_entry(entry))
        out[registry] = descriptors
        log_event("INFO", f"Extracted {len(descriptors)} module(s) from {registry} registry")
    return out


def fetch_install_json(url: str, timeout_s: float = 30.0) -> list[dict[str, Any]]:
    try:
        r = requests.get(url, timeout=timeout_s)
        r.raise_for_status()
        data = r.json()
    except requests.RequestException as e:
        raise RegistryError(f"Cannot read install JSON from {url}: {e}") from e
    except ValueError as e:
        raise RegistryError(f"Install JSON at {url} is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise RegistryError(f"Install JSON at {url} must be a list of modules")
    return data


def fetch_registries(install_urls: Mapping[str, str], timeout_s: float = 30.0) -> dict[str, list[ModuleDescriptor]]:
    raw: dict[str, list[dict[str, Any]]] = {}
    for registry in ordered_registries(install_urls.keys()):
        raw[registry] = fetch_install_json(install_urls[registry], timeout_s=timeout_s)
        log_event("INFO", f"Read {registry} registry with {len(raw[registry])} modules")
    return extract_descriptors(raw)


def image_namespace(version: str, cfg: Settings = settings) -> str:
    private = cfg.private_namespace
    if private:
        return private
    if "SNAPSHOT" in version:
        return cfg.snapshot_namespace
    return cfg.release_namespace


def module_image(descriptor: ModuleDescriptor, version: str, cfg: Settings = settings) -> str:
    return f"{image_namespace(version, cfg)}/{descriptor.name}:{version}"


def resolve_sidecar_image(
    eureka_modules: Iterable[ModuleDescriptor],
    sidecar: SidecarModuleConfig,
    cfg: Settings = settings,
) -> tuple[str, bool]:
    """Return ``(image, pull)`` for the sidecar.

    A configured version wins over the registry's ``folio-module-sidecar``
    entry. Local images are never pulled.
    """
    version = sidecar.version
    if version is None:
        for d in eureka_modules:
            if d.name == SIDECAR_PROJECT:
                version = d.version
                break
    if version is None:
        raise RegistryError("Sidecar version is not found in registry or in the current config")

    if sidecar.local_image:
        return f"{sidecar.local_image}:{version}", False
    return f"{image_namespace(version, cfg)}/{sidecar.image}:{version}", True


def env_registry_auth(cfg: Settings = settings) -> RegistryAuth:
    """Credentials for the private registry, taken from the environment.

    Static username/password stand in for a short-lived registry token (such as
    an ECR authorization token); callers needing that pass their own
    :data:`RegistryAuth` that fetches one per call. Public namespaces need no
    auth, so this yields None unless the private namespace variable is set.
    """

    def _auth() -> dict[str, str] | None:
        if not cfg.private_namespace:
            return None
        username = os.getenv("MDO_REGISTRY_USERNAME")
        password = os.getenv("MDO_REGISTRY_PASSWORD")
        if not username or not password:
            raise RegistryError("MDO_REGISTRY_USERNAME / MDO_REGISTRY_PASSWORD must be set for the private registry")
        return {"username": username, "password": password}

    return _auth


def no_registry_auth() -> dict[str, str] | None:
    return None
