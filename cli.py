from __future__ import annotations

import argparse
import json
import sys
import time

from docker.errors import DockerException

from mdo.composer import ResourceLimits, SpecComposer
from mdo.config import default_config_path, load_config
from mdo.config_models import RunConfig
from mdo.containers import (
    all_containers_pattern,
    docker_available,
    docker_client,
    ensure_network,
    image_present,
    management_containers_pattern,
    profile_containers_pattern,
    pull_image,
    single_module_pattern,
)
from mdo.deployer import ModuleDeployer, ModuleSet
from mdo.errors import DeploymentError, MdoError
from mdo.events import configure_logging, log_event
from mdo.ports import PortRange, free_ports
from mdo.readiness import wait_for_modules
from mdo.registry import EUREKA_REGISTRY, env_registry_auth, fetch_registries, resolve_sidecar_image
from mdo.settings import settings
from mdo.teardown import undeploy_by_pattern
from mdo.vault import get_vault_root_token


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _load(args: argparse.Namespace) -> RunConfig:
    path = args.config or default_config_path(settings, args.profile or "combined")
    return load_config(path, profile=args.profile)


def _deploy(run: RunConfig, management_only: bool, use_vault: bool, readiness: bool) -> int:
    composer = SpecComposer(PortRange(run.port_start, run.port_end))
    specs = composer.compose_all(run.backend_modules, management_only=management_only)

    log_event("INFO", "Reading backend module registries")
    registries = fetch_registries(run.install)

    client = docker_client()
    try:
        if not docker_available(client):
            log_event("ERROR", "Docker is not available. Start Docker Desktop / docker daemon and try again.")
            return 1
        ensure_network(client)

        token = get_vault_root_token(client) if use_vault else ""
        auth = env_registry_auth()
        deployer = ModuleDeployer(client, run.profile, auth=auth)

        if management_only:
            module_set = ModuleSet.management(registries, specs, run.environment, token)
            sidecar_image, sidecar_resources = "", ResourceLimits.sidecar_defaults()
        else:
            module_set = ModuleSet.core_and_business(registries, specs, run.environment, run.sidecar_module.environment, token)
            sidecar_image, pull = resolve_sidecar_image(registries.get(EUREKA_REGISTRY, []), run.sidecar_module)
            log_event("INFO", f"Using sidecar image {sidecar_image}")
            if pull and not image_present(client, sidecar_image):
                pull_image(client, sidecar_image, auth)
            sidecar_resources = ResourceLimits.from_config(run.sidecar_module.resources, sidecar=True)

        try:
            deployed = deployer.deploy_modules(module_set, sidecar_image, sidecar_resources)
        except DeploymentError as e:
            for err in e.errors:
                log_event("ERROR", str(err))
            _print({"deployed": e.deployed, "errors": [str(err) for err in e.errors]})
            return 1
    finally:
        client.close()

    if readiness and deployed:
        log_event("INFO", "Waiting for modules to initialize")
        time.sleep(settings.readiness_initial_delay_s)
        failures = wait_for_modules(deployed)
        if failures:
            _print({"deployed": deployed, "unready": [f.module for f in failures]})
            return 1
        log_event("INFO", "All modules have initialized")

    _print({"deployed": deployed})
    return 0


def _undeploy(pattern: str, remove_async: bool) -> int:
    client = docker_client()
    try:
        count = undeploy_by_pattern(client, pattern, remove_async=remove_async)
    finally:
        client.close()
    _print({"pattern": pattern, "undeployed": count})
    return 0


def _list(pattern: str) -> int:
    client = docker_client()
    try:
        deployer = ModuleDeployer(client, profile="")
        _print([{"name": r.name, "id": r.id[:12], "ports": list(r.ports)} for r in deployer.list_deployed(pattern)])
    finally:
        client.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Module Deployment Orchestrator CLI")
    p.add_argument("--config", help="Path to the YAML run config")
    p.add_argument("--profile", help="Profile name (overrides the config file)")
    p.add_argument("--log-level", default=None, help="DEBUG, INFO, WARN or ERROR")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_dep = sub.add_parser("deploy-modules", help="Deploy core and business modules with their sidecars")
    s_dep.add_argument("--no-vault", action="store_true", help="Do not read the vault root token")
    s_dep.add_argument("--skip-readiness", action="store_true", help="Do not wait for modules to become ready")

    s_mgr = sub.add_parser("deploy-management", help="Deploy management modules")
    s_mgr.add_argument("--no-vault", action="store_true", help="Do not read the vault root token")
    s_mgr.add_argument("--skip-readiness", action="store_true", help="Do not wait for modules to become ready")

    sub.add_parser("undeploy-modules", help="Undeploy every container of the profile")
    sub.add_parser("undeploy-management", help="Undeploy management modules")
    sub.add_parser("undeploy-all", help="Undeploy every managed container")

    s_one = sub.add_parser("undeploy-module", help="Undeploy one module and its sidecar")
    s_one.add_argument("--name", required=True, help="Module name, e.g. mod-orders")

    sub.add_parser("list-modules", help="List deployed containers of the profile")
    sub.add_parser("free-ports", help="List currently free ports in the configured range")

    args = p.parse_args(argv)
    configure_logging(args.log_level)

    try:
        run = _load(args)

        if args.cmd in {"deploy-modules", "deploy-management"}:
            return _deploy(
                run,
                management_only=args.cmd == "deploy-management",
                use_vault=not args.no_vault,
                readiness=not args.skip_readiness,
            )

        if args.cmd == "undeploy-modules":
            return _undeploy(profile_containers_pattern(run.profile), remove_async=True)

        if args.cmd == "undeploy-management":
            return _undeploy(management_containers_pattern(), remove_async=False)

        if args.cmd == "undeploy-all":
            return _undeploy(all_containers_pattern(), remove_async=False)

        if args.cmd == "undeploy-module":
            return _undeploy(single_module_pattern(run.profile, args.name), remove_async=False)

        if args.cmd == "list-modules":
            return _list(profile_containers_pattern(run.profile))

        if args.cmd == "free-ports":
            _print(free_ports(PortRange(run.port_start, run.port_end)))
            return 0
    except MdoError as e:
        log_event("ERROR", str(e))
        return 1
    except DockerException as e:
        log_event("ERROR", f"Docker error: {e}")
        return 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
