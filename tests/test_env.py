from types import MappingProxyType

from mdo.composer import BackendModuleSpec
from mdo.env import as_docker_env, compose_module_env, compose_sidecar_env
from mdo.registry import ModuleDescriptor

DESC = ModuleDescriptor(id="mod-orders-13.0.0", name="mod-orders", version="13.0.0", sidecar_name="mod-orders-sc")


def _spec(**kw):
    base = dict(name="mod-orders", deploy_module=True, deploy_sidecar=True, container_server_port=8081)
    base.update(kw)
    return BackendModuleSpec(**base)


def test_module_env_plain_uses_global_then_overrides(cfg):
    spec = _spec(environment=MappingProxyType({"DB_HOST": "pg2", "EXTRA": "1"}))
    env = compose_module_env({"DB_HOST": "postgres", "KAFKA_HOST": "kafka"}, DESC, spec, "tok", cfg)
    assert env == {"DB_HOST": "pg2", "KAFKA_HOST": "kafka", "EXTRA": "1"}


def test_module_env_conditional_blocks(cfg):
    spec = _spec(use_vault=True, use_okapi_url=True, disable_system_user=True)
    env = compose_module_env({}, DESC, spec, "root-token", cfg)
    assert env["SECRET_STORE_VAULT_TOKEN"] == "root-token"
    assert env["OKAPI_URL"] == "http://mod-orders-sc:8081"
    assert env["SYSTEM_USER_ENABLED"] == "false"


def test_module_overrides_win_over_conditional_blocks(cfg):
    spec = _spec(use_vault=True, environment=MappingProxyType({"SECRET_STORE_TYPE": "AWS_SSM"}))
    env = compose_module_env({}, DESC, spec, "tok", cfg)
    assert env["SECRET_STORE_TYPE"] == "AWS_SSM"


def test_sidecar_env_always_has_vault_and_keycloak(cfg):
    env = compose_sidecar_env({"SIDECAR_FORWARD_UNKNOWN_REQUESTS": "true"}, DESC, _spec(), "13.0.1", "tok", cfg)
    assert env["SIDECAR_FORWARD_UNKNOWN_REQUESTS"] == "true"
    assert env["SECRET_STORE_VAULT_TOKEN"] == "tok"
    assert env["KC_URL"] == cfg.keycloak_url
    assert env["MODULE_NAME"] == "mod-orders"
    assert env["MODULE_VERSION"] == "13.0.1"
    assert env["MODULE_URL"] == "http://mod-orders:8081"
    assert env["SIDECAR_URL"] == "http://mod-orders-sc:8081"


def test_as_docker_env_keeps_order():
    assert as_docker_env({"B": "2", "A": "1"}) == ["B=2", "A=1"]
