import json

import pytest

import cli
from mdo.registry import extract_descriptors

CONFIG = """
profile: combined
port-start: 45100
port-end: 45199
install:
  folio: http://registry.local/folio.json
  eureka: http://registry.local/eureka.json
environment:
  DB_HOST: postgres
backend-modules:
  mod-orders:
  mod-users:
    deploy-sidecar: false
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.combined.yaml"
    path.write_text(CONFIG)
    return str(path)


@pytest.fixture
def fake_docker(docker_client, monkeypatch):
    monkeypatch.setattr(cli, "docker_client", lambda: docker_client)
    monkeypatch.delenv("AWS_ECR_FOLIO_REPO", raising=False)
    return docker_client


def _out(capsys):
    return json.loads(capsys.readouterr().out)


def test_free_ports(config_file, capsys):
    assert cli.main(["--config", config_file, "free-ports"]) == 0
    ports = _out(capsys)
    assert ports == sorted(ports)
    assert all(45100 <= p <= 45199 for p in ports)


def test_undeploy_module_removes_module_and_sidecar(config_file, fake_docker, capsys):
    for name in ("eureka-combined-mod-orders", "eureka-combined-mod-orders-sc", "eureka-combined-mod-users"):
        fake_docker.add_existing(name)
    assert cli.main(["--config", config_file, "undeploy-module", "--name", "mod-orders"]) == 0
    assert _out(capsys)["undeployed"] == 2
    assert sorted(fake_docker.ops("remove")) == ["eureka-combined-mod-orders", "eureka-combined-mod-orders-sc"]
    assert fake_docker.closed


def test_undeploy_management_with_nothing_deployed(config_file, fake_docker, capsys):
    assert cli.main(["--config", config_file, "undeploy-management"]) == 0
    assert _out(capsys)["undeployed"] == 0


def test_list_modules(config_file, fake_docker, capsys):
    fake_docker.add_existing("eureka-combined-mod-orders")
    fake_docker.add_existing("eureka-mgr-tenants")
    assert cli.main(["--config", config_file, "list-modules"]) == 0
    assert [row["name"] for row in _out(capsys)] == ["eureka-combined-mod-orders"]


def test_deploy_modules(config_file, fake_docker, monkeypatch, capsys):
    registries = extract_descriptors(
        {
            "folio": [{"id": "mod-orders-13.0.0"}, {"id": "mod-users-19.0.0"}],
            "eureka": [{"id": "folio-module-sidecar-3.0.0"}],
        }
    )
    monkeypatch.setattr(cli, "fetch_registries", lambda install: registries)

    rc = cli.main(["--config", config_file, "deploy-modules", "--no-vault", "--skip-readiness"])
    assert rc == 0
    assert sorted(_out(capsys)["deployed"]) == ["mod-orders", "mod-users"]
    assert "folioorg/folio-module-sidecar:3.0.0" in fake_docker.ops("pull")
    assert sorted(fake_docker.ops("create")) == [
        "eureka-combined-mod-orders",
        "eureka-combined-mod-orders-sc",
        "eureka-combined-mod-users",
    ]
    assert fake_docker.closed


def test_deploy_reports_sidecar_failures(config_file, fake_docker, monkeypatch, capsys):
    registries = extract_descriptors({"folio": [{"id": "mod-orders-13.0.0"}], "eureka": [{"id": "folio-module-sidecar-3.0.0"}]})
    monkeypatch.setattr(cli, "fetch_registries", lambda install: registries)
    fake_docker.fail_start.add("eureka-combined-mod-orders-sc")

    assert cli.main(["--config", config_file, "deploy-modules", "--no-vault", "--skip-readiness"]) == 1
    out = _out(capsys)
    assert list(out["deployed"]) == ["mod-orders"]
    assert len(out["errors"]) == 1


def test_missing_vault_token_is_an_error(config_file, fake_docker, monkeypatch):
    monkeypatch.setattr(cli, "fetch_registries", lambda install: {})
    assert cli.main(["--config", config_file, "deploy-modules", "--skip-readiness"]) == 1


def test_missing_config_is_an_error(tmp_path):
    assert cli.main(["--config", str(tmp_path / "nope.yaml"), "free-ports"]) == 1
